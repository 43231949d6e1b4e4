import structlog
from flask import request
from flask_login import current_user, login_required
from sqlalchemy.orm import selectinload

from ...extensions import db
from ...http import ApiError, clean_str, json_body, ok, parse_int, require_fields
from ...models import CohortUser, ForumAnswer, ForumPost
from ...models.common import utcnow
from ...models.user import ADMIN, FACILITATOR
from ...services import gamification
from ...services.analytics import get_cohort_or_404, log_activity
from . import bp

logger = structlog.get_logger(__name__)

@bp.before_request
@login_required
def require_login():
    return None

def _can_access(cohort_id):
    if current_user.role == ADMIN:
        return True
    return CohortUser.query.filter_by(cohort_id=cohort_id,
                                      user_id=current_user.id).first() is not None

def _require_access(cohort_id):
    if not _can_access(cohort_id):
        raise ApiError("You are not a member of this cohort", 403)

def get_post_or_404(pid):
    post = db.session.get(ForumPost, pid)
    if post is None:
        raise ApiError("Post not found", 404)
    return post

def _tags(value):
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(t, str) for t in value):
        raise ApiError("tags must be a list of strings")
    return [t.strip() for t in value if t.strip()]

@bp.post("/posts")
def create_post():
    data = json_body()
    require_fields(data, "title", "content", "cohortId")
    cohort = get_cohort_or_404(parse_int(data["cohortId"], "cohortId"))
    _require_access(cohort.id)

    post = ForumPost(title=clean_str(data["title"]), content=clean_str(data["content"]),
                     tags=_tags(data.get("tags")), cohort=cohort,
                     user_id=current_user.id, solved=False, views=0,
                     created_at=utcnow())
    db.session.add(post)
    gamification.handle_forum_post(current_user.id)
    log_activity(current_user.id, "forum_post", cohortId=cohort.id)
    db.session.commit()
    logger.info("forum.post_created", post_id=post.id, cohort_id=cohort.id)
    return ok(post.to_dict(), 201)

@bp.get("/posts")
def list_posts():
    q = ForumPost.query.options(selectinload(ForumPost.answers),
                                selectinload(ForumPost.user),
                                selectinload(ForumPost.cohort))
    cohort_id = request.args.get("cohortId", type=int)
    solved = request.args.get("solved")
    tag = request.args.get("tag")
    if cohort_id:
        q = q.filter(ForumPost.cohort_id == cohort_id)
    if solved in ("true", "false"):
        q = q.filter(ForumPost.solved.is_(solved == "true"))
    if current_user.role != ADMIN:
        mine = db.session.query(CohortUser.cohort_id).filter_by(user_id=current_user.id)
        q = q.filter(ForumPost.cohort_id.in_(mine))

    posts = q.order_by(ForumPost.created_at.desc(), ForumPost.id.desc()).all()
    # tags live in a JSON column, so the tag filter runs here
    if tag:
        posts = [p for p in posts if tag in (p.tags or [])]
    return ok([p.to_dict() for p in posts])

@bp.get("/posts/<int:pid>")
def get_post(pid):
    post = get_post_or_404(pid)
    _require_access(post.cohort_id)
    post.views = (post.views or 0) + 1
    db.session.commit()
    return ok(post.to_dict(with_answers=True))

@bp.post("/posts/<int:pid>/answers")
def create_answer(pid):
    post = get_post_or_404(pid)
    _require_access(post.cohort_id)
    data = json_body()
    require_fields(data, "content")

    answer = ForumAnswer(post=post, user_id=current_user.id,
                         content=clean_str(data["content"]), endorsements=0,
                         is_accepted=False, created_at=utcnow())
    db.session.add(answer)
    gamification.handle_forum_answer(current_user.id)
    log_activity(current_user.id, "forum_answer", postId=post.id)
    db.session.commit()
    logger.info("forum.answer_created", post_id=post.id, answer_id=answer.id)
    return ok(answer.to_dict(), 201)

@bp.put("/posts/<int:pid>/solve")
def solve_post(pid):
    post = get_post_or_404(pid)
    if post.user_id != current_user.id and current_user.role not in (ADMIN, FACILITATOR):
        raise ApiError("Only the author can mark this post as solved", 403)
    if post.user_id != current_user.id:
        _require_access(post.cohort_id)

    data = json_body()
    if data.get("answerId") not in (None, ""):
        answer = db.session.get(ForumAnswer, parse_int(data["answerId"], "answerId"))
        if answer is None or answer.post_id != post.id:
            raise ApiError("Answer not found", 404)
        if not answer.is_accepted:
            answer.is_accepted = True
            if answer.user_id != post.user_id:
                gamification.handle_forum_solved(answer.user_id)
    post.solved = True
    db.session.commit()
    logger.info("forum.post_solved", post_id=post.id)
    return ok(post.to_dict(with_answers=True))

@bp.put("/answers/<int:aid>/endorse")
def endorse_answer(aid):
    answer = db.session.get(ForumAnswer, aid)
    if answer is None:
        raise ApiError("Answer not found", 404)
    _require_access(answer.post.cohort_id)
    if answer.user_id == current_user.id:
        raise ApiError("You cannot endorse your own answer")

    answer.endorsements = (answer.endorsements or 0) + 1
    gamification.handle_forum_endorsement(answer.user_id)
    db.session.commit()
    logger.info("forum.answer_endorsed", answer_id=answer.id, endorsements=answer.endorsements)
    return ok(answer.to_dict())
