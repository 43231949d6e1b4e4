from flask import request
from flask_login import current_user, login_required

from ...extensions import db
from ...http import ApiError, json_body, ok, parse_int, require_fields
from ...models import Badge, User
from ...models.user import ADMIN, FACILITATOR
from ...services import gamification
from ..auth.routes import role_required
from . import bp

@bp.before_request
@login_required
def require_login():
    return None

@bp.get("/leaderboard")
def leaderboard():
    timeframe = request.args.get("timeframe", "alltime")
    if timeframe not in gamification.TIMEFRAMES:
        raise ApiError(f"timeframe must be one of {', '.join(gamification.TIMEFRAMES)}")
    cohort_id = request.args.get("cohortId", type=int)
    return ok(gamification.get_leaderboard(cohort_id=cohort_id, timeframe=timeframe))

@bp.get("/user-stats")
def user_stats():
    return ok(gamification.get_user_stats(current_user.id))

@bp.post("/award-badge")
@role_required(ADMIN, FACILITATOR)
def award_badge():
    data = json_body()
    require_fields(data, "userId", "badgeType")
    if data["badgeType"] not in gamification.BADGE_TYPES:
        raise ApiError("Unknown badge type")
    user = db.session.get(User, parse_int(data["userId"], "userId"))
    if user is None:
        raise ApiError("User not found", 404)

    gamification.ensure_badge_catalog()
    awarded = gamification.award_badge(user.id, data["badgeType"])
    if awarded is None:
        raise ApiError("User already has this badge", 409)
    db.session.commit()
    return ok(awarded.to_dict(), 201)

@bp.get("/badges")
def badges():
    return ok([b.to_dict() for b in Badge.query.order_by(Badge.id).all()])
