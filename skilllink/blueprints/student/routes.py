from flask import request
from flask_login import current_user, login_required
from sqlalchemy import func

from ...extensions import db
from ...http import ApiError, ok
from ...models import Assignment, Attendance, CohortUser, Submission
from ...models.attendance import PRESENT
from ...models.cohort import MEMBER_STUDENT
from ...models.common import iso, utcnow
from ...models.user import STUDENT
from ...services.analytics import attendance_counts, published_assignments_for, rate, round1
from ..auth.routes import role_required
from . import bp

@bp.before_request
@login_required
@role_required(STUDENT)
def require_student():
    return None

def _own_submission(assignment, user_id):
    for s in assignment.submissions:
        if s.user_id == user_id:
            return {"id": s.id, "submittedAt": iso(s.submitted_at), "grade": s.grade,
                    "feedback": s.feedback, "githubUrl": s.github_url,
                    "gradedAt": iso(s.graded_at)}
    return None

def _with_submission(assignment, user_id):
    row = assignment.to_dict()
    row["submission"] = _own_submission(assignment, user_id)
    return row

@bp.get("/dashboard")
def dashboard():
    uid = current_user.id
    memberships = CohortUser.query.filter_by(user_id=uid, role=MEMBER_STUDENT).all()
    upcoming = (published_assignments_for(uid)
                .filter(Assignment.due_date >= utcnow())
                .order_by(Assignment.due_date.asc()).limit(5).all())
    recent = (Submission.query
              .filter(Submission.user_id == uid, Submission.grade.isnot(None))
              .order_by(Submission.graded_at.desc()).limit(5).all())
    return ok({
        "cohorts": [m.cohort.to_dict() for m in memberships],
        "upcomingAssignments": [_with_submission(a, uid) for a in upcoming],
        "recentGrades": [s.to_dict() for s in recent],
        "attendanceCount": Attendance.query.filter_by(user_id=uid, status=PRESENT).count(),
    })

@bp.get("/assignments")
def my_assignments():
    status = request.args.get("status")
    q = published_assignments_for(current_user.id)
    if status == "upcoming":
        q = q.filter(Assignment.due_date >= utcnow())
    elif status == "past":
        q = q.filter(Assignment.due_date < utcnow())
    elif status:
        raise ApiError("status must be upcoming or past")
    assignments = q.order_by(Assignment.due_date.asc(), Assignment.id.asc()).all()
    return ok([_with_submission(a, current_user.id) for a in assignments])

@bp.get("/progress")
def progress():
    uid = current_user.id
    published = published_assignments_for(uid).with_entities(Assignment.id)
    total = published.count()
    completed = (Submission.query
                 .filter(Submission.user_id == uid,
                         Submission.assignment_id.in_(published)).count())
    average = (db.session.query(func.avg(Submission.grade))
               .filter(Submission.user_id == uid, Submission.grade.isnot(None)).scalar())
    return ok({
        "totalAssignments": total,
        "completedAssignments": completed,
        "completionRate": round(rate(completed, total)),
        "averageGrade": round1(average or 0),
        "attendanceStats": attendance_counts(user_id=uid),
    })
