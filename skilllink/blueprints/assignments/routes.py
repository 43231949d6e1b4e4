import structlog
from flask import request
from flask_login import current_user, login_required
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import selectinload

from ...extensions import db
from ...http import (
    ApiError, clean_str, json_body, ok, parse_datetime, parse_int, parse_number,
    require_fields,
)
from ...models import Assignment, CohortUser, Submission
from ...models.assignment import ARCHIVED, ASSIGNMENT_STATUSES, DRAFT, PUBLISHED
from ...models.cohort import MEMBER_STUDENT
from ...models.common import utcnow
from ...models.user import ADMIN, FACILITATOR, STUDENT
from ...services import gamification
from ...services.analytics import (
    get_assignment_analytics, get_cohort_assignment_analytics, log_activity,
)
from ..auth.routes import role_required
from ..cohorts.routes import get_managed_cohort
from . import bp

logger = structlog.get_logger(__name__)

@bp.before_request
@login_required
def require_login():
    return None

def get_assignment_or_404(aid):
    a = db.session.get(Assignment, aid)
    if a is None:
        raise ApiError("Assignment not found", 404)
    return a

def _status(value):
    if value not in ASSIGNMENT_STATUSES:
        raise ApiError(f"status must be one of {', '.join(ASSIGNMENT_STATUSES)}")
    return value

def _max_score(value):
    score = parse_int(value, "maxScore")
    if score < 1:
        raise ApiError("maxScore must be at least 1")
    return score

def _files(value):
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(f, str) for f in value):
        raise ApiError("files must be a list of URLs")
    return value

def _student_cohort_ids():
    rows = (db.session.query(CohortUser.cohort_id)
            .filter_by(user_id=current_user.id).all())
    return [r[0] for r in rows]

@bp.post("")
@role_required(ADMIN, FACILITATOR)
def create_assignment():
    data = json_body()
    require_fields(data, "title", "description", "dueDate", "cohortId")
    cohort = get_managed_cohort(parse_int(data["cohortId"], "cohortId"))
    a = Assignment(title=clean_str(data["title"]),
                   description=clean_str(data["description"]),
                   due_date=parse_datetime(data["dueDate"], "dueDate"),
                   max_score=_max_score(data.get("maxScore", 100)),
                   status=_status(data.get("status") or PUBLISHED),
                   cohort=cohort, created_by=current_user._get_current_object(),
                   created_at=utcnow())
    db.session.add(a)
    db.session.commit()
    logger.info("assignment.created", assignment_id=a.id, cohort_id=cohort.id)
    return ok(a.to_dict(), 201)

@bp.get("")
def list_assignments():
    q = Assignment.query.options(selectinload(Assignment.submissions),
                                 selectinload(Assignment.cohort))
    cohort_id = request.args.get("cohortId", type=int)
    status = request.args.get("status")
    if cohort_id:
        q = q.filter(Assignment.cohort_id == cohort_id)
    if status:
        q = q.filter(Assignment.status == _status(status))
    if current_user.role == STUDENT:
        q = q.filter(Assignment.cohort_id.in_(_student_cohort_ids()),
                     Assignment.status == PUBLISHED)

    data = []
    for a in q.order_by(Assignment.due_date.asc(), Assignment.id.asc()).all():
        row = a.to_dict()
        row["submissionCount"] = len(a.submissions)
        data.append(row)
    return ok(data)

@bp.get("/<int:aid>")
def get_assignment(aid):
    a = get_assignment_or_404(aid)
    subs = a.submissions
    if current_user.role == STUDENT:
        if a.status != PUBLISHED or not a.cohort.has_member(current_user.id):
            raise ApiError("Assignment not found", 404)
        subs = [s for s in subs if s.user_id == current_user.id]
    data = a.to_dict()
    data["submissions"] = [s.to_dict() for s in
                           sorted(subs, key=lambda s: s.submitted_at, reverse=True)]
    return ok(data)

@bp.put("/<int:aid>")
@role_required(ADMIN, FACILITATOR)
def update_assignment(aid):
    a = get_assignment_or_404(aid)
    get_managed_cohort(a.cohort_id)
    data = json_body()
    if "title" in data:
        if not clean_str(data["title"]):
            raise ApiError("Title cannot be empty")
        a.title = clean_str(data["title"])
    if "description" in data:
        a.description = clean_str(data["description"]) or ""
    if "dueDate" in data:
        a.due_date = parse_datetime(data["dueDate"], "dueDate")
    if "maxScore" in data:
        score = _max_score(data["maxScore"])
        if any(s.grade is not None and s.grade > score for s in a.submissions):
            raise ApiError("maxScore cannot be lower than an existing grade")
        a.max_score = score
    if "status" in data:
        a.status = _status(data["status"])
    db.session.commit()
    return ok(a.to_dict())

@bp.delete("/<int:aid>")
@role_required(ADMIN, FACILITATOR)
def archive_assignment(aid):
    a = get_assignment_or_404(aid)
    get_managed_cohort(a.cohort_id)
    a.status = ARCHIVED
    db.session.commit()
    logger.info("assignment.archived", assignment_id=a.id)
    return ok(message="Assignment archived successfully")

@bp.post("/<int:aid>/submit")
def submit_assignment(aid):
    a = get_assignment_or_404(aid)
    if a.status == ARCHIVED:
        raise ApiError("Assignment is archived")
    if a.status == DRAFT:
        raise ApiError("Assignment is not published")
    if not a.cohort.has_member(current_user.id, MEMBER_STUDENT):
        raise ApiError("You are not a student in this cohort", 403)

    data = json_body()
    github_url = clean_str(data.get("githubUrl")) or None
    files = _files(data.get("files"))
    if Submission.query.filter_by(assignment_id=a.id, user_id=current_user.id).first():
        raise ApiError("Assignment already submitted")
    s = Submission(assignment=a, user_id=current_user.id, github_url=github_url,
                   files=files, submitted_at=utcnow())
    db.session.add(s)
    try:
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        raise ApiError("Assignment already submitted")

    gamification.handle_assignment_submission(s)
    log_activity(current_user.id, "assignment_submitted", assignmentId=a.id)
    db.session.commit()
    logger.info("assignment.submitted", assignment_id=a.id, user_id=current_user.id,
                late=s.is_late)
    return ok(s.to_dict(), 201)

@bp.put("/<int:aid>/submissions/<int:sid>/grade")
@role_required(ADMIN, FACILITATOR)
def grade_submission(aid, sid):
    a = get_assignment_or_404(aid)
    get_managed_cohort(a.cohort_id)
    s = db.session.get(Submission, sid)
    if s is None or s.assignment_id != a.id:
        raise ApiError("Submission not found", 404)

    data = json_body()
    require_fields(data, "grade")
    grade = parse_number(data["grade"], "grade")
    if not (0 <= grade <= a.max_score):
        raise ApiError(f"Grade must be between 0 and {a.max_score}")

    first_grading = s.grade is None
    s.grade = grade
    if "feedback" in data:
        s.feedback = clean_str(data["feedback"]) or None
    s.graded_at = utcnow()
    if first_grading:
        gamification.handle_assignment_graded(s)
    db.session.commit()
    logger.info("assignment.graded", submission_id=s.id, grade=grade,
                first_grading=first_grading)
    return ok(s.to_dict())

@bp.get("/<int:aid>/analytics")
@role_required(ADMIN, FACILITATOR)
def assignment_analytics(aid):
    a = get_assignment_or_404(aid)
    get_managed_cohort(a.cohort_id)
    return ok(get_assignment_analytics(a.id))

@bp.get("/cohort/<int:cid>/analytics")
@role_required(ADMIN, FACILITATOR)
def cohort_assignment_analytics(cid):
    get_managed_cohort(cid)
    return ok(get_cohort_assignment_analytics(cid))
