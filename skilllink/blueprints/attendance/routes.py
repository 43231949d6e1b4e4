import structlog
from flask import request
from flask_login import current_user, login_required

from ...extensions import db
from ...http import (
    ApiError, arg_date, clean_str, json_body, ok, parse_date, parse_int,
    require_fields,
)
from ...models import Attendance
from ...models.attendance import ATTENDANCE_STATUSES, PRESENT
from ...models.cohort import MEMBER_STUDENT
from ...models.common import utcnow
from ...models.user import ADMIN, FACILITATOR, STUDENT
from ...services import gamification
from ...services.analytics import attendance_counts, rate, round1
from ..auth.routes import role_required
from ..cohorts.routes import get_managed_cohort
from . import bp

logger = structlog.get_logger(__name__)

@bp.before_request
@login_required
def require_login():
    return None

def _record(item, index=None):
    where = f"attendanceRecords[{index}]." if index is not None else ""
    if not isinstance(item, dict):
        raise ApiError("Each attendance record must be an object")
    require_fields(item, "userId", "status")
    status = item["status"]
    if status not in ATTENDANCE_STATUSES:
        raise ApiError(f"{where}status must be one of {', '.join(ATTENDANCE_STATUSES)}")
    notes = clean_str(item.get("notes")) or None
    return parse_int(item["userId"], f"{where}userId"), status, notes

def _check_students(cohort, user_ids):
    for uid in user_ids:
        if not cohort.has_member(uid, MEMBER_STUDENT):
            raise ApiError(f"User {uid} is not a student in this cohort")

def upsert_attendance(cohort, day, user_id, status, notes):
    """One record per (cohort, user, day); points only when a day turns PRESENT."""
    row = Attendance.query.filter_by(cohort_id=cohort.id, user_id=user_id,
                                     date=day).one_or_none()
    was_present = row is not None and row.status == PRESENT
    if row is None:
        row = Attendance(cohort_id=cohort.id, user_id=user_id, date=day,
                         created_at=utcnow())
        db.session.add(row)
    row.status = status
    row.notes = notes
    row.marked_by_id = current_user.id
    if status == PRESENT and not was_present:
        gamification.handle_attendance(user_id, status)
    return row

@bp.post("")
@role_required(ADMIN, FACILITATOR)
def mark_attendance():
    data = json_body()
    require_fields(data, "cohortId", "date", "attendanceRecords")
    cohort = get_managed_cohort(parse_int(data["cohortId"], "cohortId"))
    day = parse_date(data["date"], "date")
    items = data["attendanceRecords"]
    if not isinstance(items, list):
        raise ApiError("attendanceRecords must be a list")
    parsed = [_record(item, i) for i, item in enumerate(items)]
    _check_students(cohort, [p[0] for p in parsed])

    rows = [upsert_attendance(cohort, day, *p) for p in parsed]
    db.session.commit()
    logger.info("attendance.marked", cohort_id=cohort.id, date=day.isoformat(),
                records=len(rows))
    return ok([r.to_dict() for r in rows], 201,
              message=f"Attendance marked for {len(rows)} students")

@bp.post("/single")
@role_required(ADMIN, FACILITATOR)
def record_attendance():
    data = json_body()
    require_fields(data, "cohortId", "date")
    cohort = get_managed_cohort(parse_int(data["cohortId"], "cohortId"))
    day = parse_date(data["date"], "date")
    record = _record(data)
    _check_students(cohort, [record[0]])
    row = upsert_attendance(cohort, day, *record)
    db.session.commit()
    return ok(row.to_dict(), 201)

def _summary(records):
    counts = {s: 0 for s in ATTENDANCE_STATUSES}
    for r in records:
        counts[r.status] += 1
    return {
        "total": len(records),
        "present": counts["PRESENT"],
        "absent": counts["ABSENT"],
        "late": counts["LATE"],
        "excused": counts["EXCUSED"],
        "attendanceRate": round1(rate(counts["PRESENT"], len(records))),
    }

def _date_range(q):
    start, end = arg_date("startDate"), arg_date("endDate")
    if start:
        q = q.filter(Attendance.date >= start)
    if end:
        q = q.filter(Attendance.date <= end)
    return q

def _newest_first(q):
    return q.order_by(Attendance.date.desc(), Attendance.id.desc())

@bp.get("/my-attendance")
def my_attendance():
    records = _newest_first(Attendance.query.filter_by(user_id=current_user.id)).all()
    return ok({"records": [r.to_dict() for r in records], "summary": _summary(records)})

@bp.get("")
def list_attendance():
    q = _date_range(Attendance.query)
    cohort_id = request.args.get("cohortId", type=int)
    user_id = request.args.get("userId", type=int)
    if current_user.role == STUDENT:
        user_id = current_user.id
    if cohort_id:
        q = q.filter(Attendance.cohort_id == cohort_id)
    if user_id:
        q = q.filter(Attendance.user_id == user_id)
    return ok([r.to_dict() for r in _newest_first(q).all()])

@bp.get("/cohort/<int:cid>")
@role_required(ADMIN, FACILITATOR)
def cohort_attendance(cid):
    get_managed_cohort(cid)
    q = _date_range(Attendance.query.filter_by(cohort_id=cid))
    return ok([r.to_dict() for r in _newest_first(q).all()])

@bp.get("/cohort/<int:cid>/stats")
@role_required(ADMIN, FACILITATOR)
def cohort_attendance_stats(cid):
    cohort = get_managed_cohort(cid)
    records = Attendance.query.filter_by(cohort_id=cid).all()
    by_user = {}
    for r in records:
        by_user.setdefault(r.user_id, []).append(r)

    students = []
    for m in cohort.members:
        if m.role != MEMBER_STUDENT:
            continue
        summary = _summary(by_user.get(m.user_id, []))
        students.append({"student": m.user.brief(), **summary})
    return ok({
        "cohortId": cohort.id,
        "totalRecords": len(records),
        "byStatus": attendance_counts(cohort_id=cid),
        "students": students,
    })

@bp.get("/cohort/<int:cid>/date/<day>")
@role_required(ADMIN, FACILITATOR)
def attendance_by_date(cid, day):
    get_managed_cohort(cid)
    when = parse_date(day, "date")
    records = (Attendance.query.filter_by(cohort_id=cid, date=when)
               .order_by(Attendance.user_id).all())
    return ok([r.to_dict() for r in records])

@bp.get("/user/<int:uid>")
def user_attendance(uid):
    if current_user.role == STUDENT and uid != current_user.id:
        raise ApiError("You can only view your own attendance", 403)
    records = _newest_first(Attendance.query.filter_by(user_id=uid)).all()
    return ok([r.to_dict() for r in records])
