import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

import structlog
from flask import current_app

logger = structlog.get_logger(__name__)


class EmailService:
    """SMTP sender; without credentials it logs and reports the mail as unsent."""

    def __init__(self, config=None):
        cfg = config or current_app.config
        self.smtp_server = cfg.get("MAIL_SERVER")
        self.smtp_port = int(cfg.get("MAIL_PORT") or 587)
        self.smtp_user = cfg.get("MAIL_USERNAME")
        self.smtp_password = cfg.get("MAIL_PASSWORD")
        self.from_email = cfg.get("MAIL_FROM")
        self.from_name = cfg.get("MAIL_FROM_NAME")

    @property
    def configured(self):
        return bool(self.smtp_user and self.smtp_password)

    def send(self, to_email, subject, html_body, text_body=None):
        if not self.configured:
            logger.warning("email.skipped", to=to_email, subject=subject)
            return False

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = to_email
        if text_body:
            msg.attach(MIMEText(text_body, "plain"))
        msg.attach(MIMEText(html_body, "html"))

        try:
            with smtplib.SMTP(self.smtp_server, self.smtp_port) as server:
                server.starttls()
                server.login(self.smtp_user, self.smtp_password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("email.failed", to=to_email, subject=subject, error=str(e))
            return False

        logger.info("email.sent", to=to_email, subject=subject)
        return True

    def send_facilitator_welcome(self, user, client_url):
        return self.send(
            user.email,
            "Welcome to SkillLink - Facilitator Access",
            f"<h2>Welcome to SkillLink!</h2>"
            f"<p>Hi {user.name},</p>"
            f"<p>Your facilitator account has been created.</p>"
            f"<p><strong>Email:</strong> {user.email}</p>"
            f"<p><strong>Access Code:</strong> <code>{user.access_code}</code></p>"
            f"<p>You will need this code to log in at "
            f"<a href=\"{client_url}/facilitator/login\">{client_url}/facilitator/login</a>.</p>",
        )

    def send_access_code(self, user):
        return self.send(
            user.email,
            "SkillLink - New Access Code Generated",
            f"<h2>New Access Code</h2><p>Hi {user.name},</p>"
            f"<p><strong>New Access Code:</strong> <code>{user.access_code}</code></p>"
            f"<p>Your previous access code is no longer valid.</p>",
        )

    def send_cohort_invite(self, email, cohort, invite_link):
        return self.send(
            email,
            f"You're invited to join {cohort.name}",
            f"<h2>Join {cohort.name}</h2>"
            f"<p>You've been invited to join a cohort on SkillLink!</p>"
            f"<p><strong>Description:</strong> {cohort.description}</p>"
            f"<p><strong>Start Date:</strong> {cohort.start_date:%Y-%m-%d}</p>"
            f"<p><a href=\"{invite_link}\">Accept Invitation</a></p>",
            text_body=f"Join {cohort.name}: {invite_link}",
        )
