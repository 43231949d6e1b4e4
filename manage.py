import argparse, getpass
from datetime import timedelta

from skilllink import create_app
from skilllink.extensions import db
from skilllink.models import Assignment, Cohort, CohortUser, User
from skilllink.models.cohort import MEMBER_FACILITATOR, MEMBER_STUDENT
from skilllink.models.common import utcnow
from skilllink.models.user import ADMIN, FACILITATOR, STUDENT
from skilllink.security import generate_access_code, generate_invite_token
from skilllink.services.gamification import ensure_badge_catalog

DEMO_PASSWORD = "password123"

def init_db(app):
    with app.app_context():
        db.create_all()
        added = ensure_badge_catalog()
        db.session.commit()
        print(f"Tables created, {added} badges added")

def seed_badges(app):
    with app.app_context():
        added = ensure_badge_catalog()
        db.session.commit()
        print("Badges added:", added)

def _user(email, name, role):
    u = User.query.filter_by(email=email).first()
    if u:
        return u, "exists"
    u = User(email=email, name=name, role=role)
    u.set_password(DEMO_PASSWORD)
    if role == FACILITATOR:
        u.access_code = generate_access_code()
    db.session.add(u)
    return u, "created"

def seed_demo(app):
    """Admin, facilitator, two students and one cohort with an assignment."""
    with app.app_context():
        ensure_badge_catalog()
        out = [
            _user("admin@skilllink.local", "Demo Admin", ADMIN),
            _user("facilitator@skilllink.local", "Demo Facilitator", FACILITATOR),
            _user("student1@skilllink.local", "Demo Student One", STUDENT),
            _user("student2@skilllink.local", "Demo Student Two", STUDENT),
        ]
        facilitator = out[1][0]
        students = [out[2][0], out[3][0]]

        cohort = Cohort.query.filter_by(name="Demo Cohort").first()
        if not cohort:
            now = utcnow()
            cohort = Cohort(name="Demo Cohort", description="Seeded demo cohort",
                            start_date=now, end_date=now + timedelta(days=90),
                            created_by=facilitator,
                            student_invite_link=generate_invite_token(),
                            facilitator_invite_link=generate_invite_token())
            db.session.add(cohort)
            db.session.add(CohortUser(cohort=cohort, user=facilitator, role=MEMBER_FACILITATOR))
            for s in students:
                db.session.add(CohortUser(cohort=cohort, user=s, role=MEMBER_STUDENT))
            db.session.add(Assignment(title="Hello, SkillLink", description="Push a repo and submit it",
                                      due_date=now + timedelta(days=7), max_score=100,
                                      cohort=cohort, created_by=facilitator))
        db.session.commit()

        for u, action in out:
            extra = f" access code {u.access_code}" if u.role == FACILITATOR else ""
            print(f"{u.email} ({u.role}): {DEMO_PASSWORD} ({action}){extra}")
        print(f"Cohort {cohort.name}: student invite {cohort.student_invite_link}")

def create_admin(app, email, name, password):
    with app.app_context():
        email = email.strip().lower()
        if User.query.filter_by(email=email).first():
            print(f"{email} already exists")
            return 1
        if len(password) < app.config["PASSWORD_MIN_LENGTH"]:
            print(f"Password must be at least {app.config['PASSWORD_MIN_LENGTH']} characters")
            return 1
        u = User(email=email, name=name.strip(), role=ADMIN)
        u.set_password(password)
        db.session.add(u)
        db.session.commit()
        print(f"Admin {email} created")
        return 0

if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    parser.add_argument("cmd", choices=["init-db", "seed-badges", "seed-demo", "create-admin"])
    parser.add_argument("--email")
    parser.add_argument("--name", default="Administrator")
    parser.add_argument("--password")
    args = parser.parse_args()

    app = create_app()
    if args.cmd == "init-db":
        init_db(app)
    elif args.cmd == "seed-badges":
        seed_badges(app)
    elif args.cmd == "seed-demo":
        seed_demo(app)
    else:
        if not args.email:
            parser.error("create-admin needs --email")
        raise SystemExit(create_admin(app, args.email, args.name,
                                      args.password or getpass.getpass("Password: ")))
