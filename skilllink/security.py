"""Access/refresh tokens, facilitator access codes and cohort invite tokens."""
import secrets
import string
from datetime import timedelta

import structlog
from flask import current_app
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from .extensions import db
from .http import ApiError
from .models import RefreshToken, User
from .models.common import utcnow

logger = structlog.get_logger(__name__)

ACCESS_SALT = "skilllink-access"
REFRESH_SALT = "skilllink-refresh"

CODE_ALPHABET = string.ascii_uppercase + string.digits
INVITE_ALPHABET = string.ascii_lowercase + string.digits


def generate_access_code(n=6):
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(n))


def generate_invite_token(n=32):
    return "".join(secrets.choice(INVITE_ALPHABET) for _ in range(n))


def _serializer(salt):
    return URLSafeTimedSerializer(current_app.config["SECRET_KEY"], salt=salt)


def _payload(user):
    # jti keeps two tokens minted in the same second distinct
    return {"uid": user.id, "role": user.role, "jti": secrets.token_hex(8)}


def issue_access_token(user):
    return _serializer(ACCESS_SALT).dumps(_payload(user))


def load_access_token(token):
    """Return the token payload, or None if it is forged or expired."""
    try:
        return _serializer(ACCESS_SALT).loads(
            token, max_age=current_app.config["ACCESS_TOKEN_MAX_AGE"])
    except (BadSignature, SignatureExpired):
        return None


def issue_refresh_token(user):
    max_age = current_app.config["REFRESH_TOKEN_MAX_AGE"]
    token = _serializer(REFRESH_SALT).dumps(_payload(user))
    db.session.add(RefreshToken(token=token, user_id=user.id,
                                expires_at=utcnow() + timedelta(seconds=max_age)))
    return token


def issue_tokens(user):
    """Mint an access token and persist a refresh token; caller commits."""
    return issue_access_token(user), issue_refresh_token(user)


def rotate_refresh_token(token):
    """Exchange a refresh token for a new pair; the old one is consumed."""
    invalid = ApiError("Invalid or expired refresh token", 401)
    try:
        payload = _serializer(REFRESH_SALT).loads(
            token, max_age=current_app.config["REFRESH_TOKEN_MAX_AGE"])
    except (BadSignature, SignatureExpired):
        raise invalid

    stored = RefreshToken.query.filter_by(token=token).one_or_none()
    if stored is None or stored.expires_at < utcnow():
        raise invalid

    user = db.session.get(User, payload.get("uid"))
    if user is None or not user.is_active:
        raise ApiError("User not found or inactive", 401)

    db.session.delete(stored)
    access, refresh = issue_tokens(user)
    db.session.commit()
    logger.info("auth.token_refreshed", user_id=user.id)
    return user, access, refresh


def revoke_refresh_token(token):
    RefreshToken.query.filter_by(token=token).delete()
    db.session.commit()
