import structlog
from flask_login import current_user, login_required
from sqlalchemy.orm import selectinload
from sqlalchemy.exc import IntegrityError

from ...extensions import db
from ...http import ApiError, clean_str, json_body, ok, parse_datetime, parse_int, require_fields
from ...models import Cohort, CohortUser, User
from ...models.cohort import MEMBER_FACILITATOR, MEMBER_ROLES, MEMBER_STUDENT
from ...models.user import ADMIN, FACILITATOR
from ...security import generate_invite_token
from ..auth.routes import role_required
from ..facilitator.routes import cohort_counts, facilitated_cohorts
from . import bp

logger = structlog.get_logger(__name__)

@bp.before_request
@login_required
def require_login():
    return None

def get_managed_cohort(cid):
    """A cohort the caller may change: admins any, facilitators their own."""
    cohort = facilitated_cohorts().filter(Cohort.id == cid).one_or_none()
    if cohort is None:
        if db.session.get(Cohort, cid) is None:
            raise ApiError("Cohort not found", 404)
        raise ApiError("You do not manage this cohort", 403)
    return cohort

def _check_dates(start, end):
    if end < start:
        raise ApiError("End date must not be before start date")

@bp.post("")
@role_required(ADMIN, FACILITATOR)
def create_cohort():
    data = json_body()
    require_fields(data, "name", "description", "startDate", "endDate")
    start = parse_datetime(data["startDate"], "startDate")
    end = parse_datetime(data["endDate"], "endDate")
    _check_dates(start, end)

    owner = current_user._get_current_object()
    if data.get("facilitatorId") not in (None, ""):
        owner = db.session.get(User, parse_int(data["facilitatorId"], "facilitatorId"))
        if owner is None or owner.role != FACILITATOR:
            raise ApiError("Facilitator not found", 404)

    c = Cohort(name=clean_str(data["name"]), description=clean_str(data["description"]),
               start_date=start, end_date=end, created_by=owner,
               student_invite_link=generate_invite_token(),
               facilitator_invite_link=generate_invite_token())
    db.session.add(c)
    if owner.role == FACILITATOR:
        db.session.add(CohortUser(cohort=c, user=owner, role=MEMBER_FACILITATOR))
    db.session.commit()
    logger.info("cohort.created", cohort_id=c.id, owner_id=owner.id)
    return ok(c.to_dict(), 201)

@bp.get("")
def list_cohorts():
    cohorts = (Cohort.query
               .options(selectinload(Cohort.members), selectinload(Cohort.assignments),
                        selectinload(Cohort.created_by))
               .filter_by(is_active=True)
               .order_by(Cohort.created_at.desc(), Cohort.id.desc()).all())
    data = []
    for c in cohorts:
        row = c.to_dict()
        row["counts"] = cohort_counts(c)
        data.append(row)
    return ok(data)

@bp.get("/<int:cid>")
def get_cohort(cid):
    c = (Cohort.query
         .options(selectinload(Cohort.members).selectinload(CohortUser.user),
                  selectinload(Cohort.assignments))
         .filter_by(id=cid).one_or_none())
    if c is None:
        raise ApiError("Cohort not found", 404)
    data = c.to_dict()
    data["members"] = [m.to_dict() for m in c.members]
    data["assignments"] = [a.to_dict() for a in c.assignments]
    return ok(data)

@bp.put("/<int:cid>")
@role_required(ADMIN, FACILITATOR)
def update_cohort(cid):
    c = get_managed_cohort(cid)
    data = json_body()
    if "name" in data:
        if not clean_str(data["name"]):
            raise ApiError("Name cannot be empty")
        c.name = clean_str(data["name"])
    if "description" in data:
        c.description = clean_str(data["description"]) or ""
    if "startDate" in data:
        c.start_date = parse_datetime(data["startDate"], "startDate")
    if "endDate" in data:
        c.end_date = parse_datetime(data["endDate"], "endDate")
    if "isActive" in data:
        c.is_active = bool(data["isActive"])
    _check_dates(c.start_date, c.end_date)
    db.session.commit()
    return ok(c.to_dict())

@bp.delete("/<int:cid>")
@role_required(ADMIN)
def delete_cohort(cid):
    c = db.session.get(Cohort, cid)
    if not c:
        raise ApiError("Cohort not found", 404)
    c.is_active = False
    db.session.commit()
    logger.info("cohort.deactivated", cohort_id=c.id)
    return ok(message="Cohort deleted successfully")

@bp.post("/<int:cid>/members")
@role_required(ADMIN, FACILITATOR)
def add_member(cid):
    c = get_managed_cohort(cid)
    data = json_body()
    require_fields(data, "userId")
    u = db.session.get(User, parse_int(data["userId"], "userId"))
    if not u:
        raise ApiError("User not found", 404)
    role = data.get("role") or (MEMBER_FACILITATOR if u.role == FACILITATOR else MEMBER_STUDENT)
    if role not in MEMBER_ROLES:
        raise ApiError(f"role must be one of {', '.join(MEMBER_ROLES)}")

    m = CohortUser(cohort_id=c.id, user_id=u.id, role=role)
    db.session.add(m)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ApiError("User is already a member of this cohort")
    logger.info("cohort.member_added", cohort_id=c.id, user_id=u.id, role=role)
    return ok(m.to_dict(), 201)

@bp.delete("/<int:cid>/members/<int:uid>")
@role_required(ADMIN, FACILITATOR)
def remove_member(cid, uid):
    c = get_managed_cohort(cid)
    m = CohortUser.query.filter_by(cohort_id=c.id, user_id=uid).one_or_none()
    if not m:
        raise ApiError("Member not found", 404)
    db.session.delete(m)
    db.session.commit()
    logger.info("cohort.member_removed", cohort_id=c.id, user_id=uid)
    return ok(message="Member removed successfully")
