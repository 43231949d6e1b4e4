import structlog
from flask import current_app, request
from flask_login import current_user, login_required
from sqlalchemy import func, or_
from sqlalchemy.orm import selectinload
from sqlalchemy.exc import IntegrityError

from ...extensions import db
from ...http import (
    ApiError, clean_str, json_body, normalize_email, ok, paginate, parse_int,
    require_fields, valid_email,
)
from ...mailer import EmailService
from ...models import Assignment, Cohort, CohortUser, User
from ...models.user import ADMIN, FACILITATOR, STUDENT
from ...security import generate_access_code, generate_invite_token
from ..auth.routes import _password, role_required
from . import bp

logger = structlog.get_logger(__name__)

@bp.before_request
@login_required
@role_required(ADMIN)
def require_admin():
    return None

def _invite_links(cohort):
    base = current_app.config["CLIENT_URL"]
    return {
        "studentInviteLink": f"{base}/student/register/{cohort.student_invite_link}",
        "facilitatorInviteLink": f"{base}/facilitator/register/{cohort.facilitator_invite_link}",
    }

def _search(query, q, *columns):
    if q:
        like = f"%{q}%"
        query = query.filter(or_(*[c.ilike(like) for c in columns]))
    return query

@bp.get("/analytics")
def analytics():
    by_role = db.session.query(User.role, func.count(User.id)).group_by(User.role).all()
    recent = User.query.order_by(User.created_at.desc(), User.id.desc()).limit(10).all()
    return ok({
        "totalUsers": User.query.count(),
        "totalCohorts": Cohort.query.count(),
        "activeCohorts": Cohort.query.filter_by(is_active=True).count(),
        "totalAssignments": Assignment.query.count(),
        "usersByRole": [{"role": r, "count": c} for r, c in by_role],
        "recentActivity": [u.to_dict() for u in recent],
    })

# ---------- Facilitators ----------
@bp.get("/facilitators")
def facilitators():
    q = (request.args.get("q") or "").strip()
    query = _search(User.query.filter_by(role=FACILITATOR), q, User.name, User.email)
    sort_map = {"created": User.created_at, "name": User.name, "email": User.email}
    items, pagination = paginate(query, sort_map, "created", "desc")

    counts = dict(db.session.query(Cohort.created_by_id, func.count(Cohort.id))
                  .filter(Cohort.created_by_id.in_([u.id for u in items]))
                  .group_by(Cohort.created_by_id).all()) if items else {}
    data = []
    for u in items:
        row = u.to_dict(include_code=True)
        row["cohortCount"] = counts.get(u.id, 0)
        data.append(row)
    return ok(data, pagination=pagination)

@bp.post("/facilitators")
def create_facilitator():
    data = json_body()
    require_fields(data, "email", "password", "name")
    email = normalize_email(data["email"])
    pw = _password(data)
    u = User(email=email, name=clean_str(data["name"]), role=FACILITATOR,
             access_code=generate_access_code())
    u.set_password(pw)
    db.session.add(u)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ApiError("Email already registered")
    logger.info("admin.facilitator_created", user_id=u.id, by=current_user.id)
    EmailService().send_facilitator_welcome(u, current_app.config["CLIENT_URL"])
    return ok(u.to_dict(include_code=True), 201)

@bp.post("/facilitators/<int:uid>/regenerate-code")
def regenerate_access_code(uid):
    u = db.session.get(User, uid)
    if not u or u.role != FACILITATOR:
        raise ApiError("Facilitator not found", 404)
    u.access_code = generate_access_code()
    db.session.commit()
    logger.info("admin.access_code_regenerated", user_id=u.id)
    EmailService().send_access_code(u)
    return ok(u.to_dict(include_code=True))

# ---------- Students ----------
@bp.get("/students")
def students():
    q = (request.args.get("q") or "").strip()
    query = _search(User.query.filter_by(role=STUDENT), q, User.name, User.email)
    query = query.options(selectinload(User.memberships).selectinload(CohortUser.cohort))
    sort_map = {"created": User.created_at, "name": User.name, "email": User.email}
    items, pagination = paginate(query, sort_map, "created", "desc")

    data = []
    for u in items:
        row = u.to_dict()
        row["cohorts"] = [m.cohort.brief() for m in u.memberships]
        data.append(row)
    return ok(data, pagination=pagination)

@bp.post("/invite-students")
def invite_students():
    data = json_body()
    require_fields(data, "cohortId", "emails")
    emails = data["emails"]
    if not isinstance(emails, list) or not emails:
        raise ApiError("emails must be a non-empty list")
    bad = [e for e in emails if not valid_email(e)]
    if bad:
        raise ApiError("Invalid email addresses",
                       errors=[{"field": "emails", "message": e} for e in bad])
    cohort = db.session.get(Cohort, parse_int(data["cohortId"], "cohortId"))
    if not cohort:
        raise ApiError("Cohort not found", 404)

    link = _invite_links(cohort)["studentInviteLink"]
    mailer = EmailService()
    results = []
    for email in emails:
        sent = mailer.send_cohort_invite(email.strip().lower(), cohort, link)
        results.append({"email": email, "status": "sent" if sent else "failed"})
    logger.info("admin.students_invited", cohort_id=cohort.id, count=len(emails))
    return ok({"cohortId": cohort.id, "inviteLink": link, "results": results})

@bp.post("/cohorts/<int:cid>/regenerate-links")
def regenerate_invite_links(cid):
    cohort = db.session.get(Cohort, cid)
    if not cohort:
        raise ApiError("Cohort not found", 404)
    cohort.student_invite_link = generate_invite_token()
    cohort.facilitator_invite_link = generate_invite_token()
    db.session.commit()
    logger.info("admin.invite_links_regenerated", cohort_id=cohort.id)
    return ok(_invite_links(cohort))

# ---------- Users ----------
@bp.put("/users/<int:uid>/toggle-status")
def toggle_user_status(uid):
    u = db.session.get(User, uid)
    if not u:
        raise ApiError("User not found", 404)
    if u.id == current_user.id:
        raise ApiError("You cannot deactivate your own account")
    u.is_active_flag = not u.is_active_flag
    if not u.is_active_flag:
        for t in list(u.refresh_tokens):
            db.session.delete(t)
    db.session.commit()
    logger.info("admin.user_status_toggled", user_id=u.id, active=u.is_active_flag)
    return ok(u.to_dict())
