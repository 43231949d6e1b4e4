from flask_login import current_user, login_required
from sqlalchemy import or_
from sqlalchemy.orm import selectinload

from ...extensions import db
from ...http import ApiError, clean_str, json_body, ok
from ...models import Assignment, Cohort, CohortUser, ForumPost
from ...models.cohort import MEMBER_FACILITATOR, MEMBER_STUDENT
from ...models.user import ADMIN, FACILITATOR
from ...services.analytics import attendance_counts
from ..auth.routes import role_required
from . import bp

@bp.before_request
@login_required
@role_required(FACILITATOR, ADMIN)
def require_staff():
    return None

def facilitated_cohorts():
    """Cohorts the current user created or facilitates; admins see all."""
    q = Cohort.query
    if current_user.role != ADMIN:
        facilitating = (db.session.query(CohortUser.cohort_id)
                        .filter_by(user_id=current_user.id, role=MEMBER_FACILITATOR))
        q = q.filter(or_(Cohort.created_by_id == current_user.id,
                         Cohort.id.in_(facilitating)))
    return q

def cohort_counts(cohort):
    return {"members": len(cohort.members), "assignments": len(cohort.assignments)}

@bp.get("/cohorts")
def my_cohorts():
    cohorts = (facilitated_cohorts()
               .options(selectinload(Cohort.members), selectinload(Cohort.assignments))
               .filter(Cohort.is_active.is_(True))
               .order_by(Cohort.created_at.desc(), Cohort.id.desc()).all())
    data = []
    for c in cohorts:
        row = c.to_dict()
        row["counts"] = cohort_counts(c)
        data.append(row)
    return ok(data)

@bp.get("/cohorts/<int:cid>/overview")
def cohort_overview(cid):
    cohort = facilitated_cohorts().filter(Cohort.id == cid).one_or_none()
    if cohort is None:
        raise ApiError("Cohort not found or access denied", 404)

    assignments = (Assignment.query.filter_by(cohort_id=cid)
                   .order_by(Assignment.due_date.asc()).limit(5).all())
    posts = (ForumPost.query.filter_by(cohort_id=cid)
             .order_by(ForumPost.created_at.desc(), ForumPost.id.desc()).limit(5).all())

    data = cohort.to_dict()
    data["students"] = [m.to_dict() for m in cohort.members if m.role == MEMBER_STUDENT]
    data["assignments"] = [dict(a.to_dict(), submissionCount=len(a.submissions))
                           for a in assignments]
    data["forumPosts"] = [p.to_dict() for p in posts]
    data["attendanceStats"] = attendance_counts(cohort_id=cid)
    return ok(data)

@bp.put("/profile")
def update_profile():
    data = json_body()
    u = current_user
    if "name" in data:
        name = clean_str(data["name"])
        if not name:
            raise ApiError("Name cannot be empty")
        u.name = name
    if "avatar" in data:
        u.avatar = clean_str(data["avatar"]) or None
    if "bio" in data:
        u.bio = clean_str(data["bio"]) or None
    db.session.commit()
    return ok(u.to_dict())
