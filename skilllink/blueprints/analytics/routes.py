import structlog
from flask import Response
from flask_login import current_user, login_required

from ...http import ApiError, json_body, ok, parse_int, require_fields
from ...models.cohort import MEMBER_STUDENT
from ...models.common import utcnow
from ...models.user import ADMIN, FACILITATOR
from ...services import analytics, reports
from ..auth.routes import role_required
from ..cohorts.routes import get_managed_cohort
from . import bp

logger = structlog.get_logger(__name__)

@bp.before_request
@login_required
def require_login():
    return None

@bp.get("/admin/overview")
@role_required(ADMIN)
def admin_overview():
    return ok(analytics.get_admin_overview())

@bp.get("/facilitator/<int:cid>")
@role_required(FACILITATOR, ADMIN)
def facilitator_analytics(cid):
    get_managed_cohort(cid)
    return ok(analytics.get_facilitator_analytics(cid))

@bp.get("/student/progress")
def student_progress():
    return ok(analytics.get_student_progress(current_user.id))

@bp.get("/cohorts/<int:cid>/students")
@role_required(FACILITATOR, ADMIN)
def cohort_students_progress(cid):
    get_managed_cohort(cid)
    return ok(analytics.get_cohort_students_progress(cid))

@bp.get("/cohorts/<int:cid>/students/<int:sid>")
def cohort_student_progress(cid, sid):
    if current_user.role in (ADMIN, FACILITATOR):
        get_managed_cohort(cid)
    elif current_user.id != sid:
        raise ApiError("You can only view your own progress", 403)
    cohort = analytics.get_cohort_or_404(cid)
    if not cohort.has_member(sid, MEMBER_STUDENT):
        raise ApiError("Student is not enrolled in this cohort", 404)
    return ok(analytics.get_cohort_student_progress(sid, cid))

@bp.post("/export")
@role_required(FACILITATOR, ADMIN)
def export_report():
    data = json_body()
    require_fields(data, "cohortId")
    fmt = data.get("format") or "csv"
    if fmt not in reports.FORMATS:
        raise ApiError(f"format must be one of {', '.join(reports.FORMATS)}")
    cohort = get_managed_cohort(parse_int(data["cohortId"], "cohortId"))

    body, mimetype, ext = reports.render_cohort_report(
        analytics.get_facilitator_analytics(cohort.id), fmt)
    filename = f"cohort-{cohort.id}-report-{utcnow():%Y%m%d}.{ext}"
    logger.info("analytics.exported", cohort_id=cohort.id, format=fmt)
    return Response(body, mimetype=mimetype,
                    headers={"Content-Disposition": f'attachment; filename="{filename}"'})
