from functools import wraps

import structlog
from flask import abort, current_app, jsonify, request
from flask_login import current_user, login_required
from sqlalchemy.exc import IntegrityError

from ...extensions import db, login_manager
from ...http import (
    ApiError, clean_str, json_body, normalize_email, ok, require_fields,
)
from ...models import Cohort, CohortUser, User
from ...models.cohort import MEMBER_STUDENT
from ...models.user import ADMIN, FACILITATOR, STUDENT
from ...security import issue_tokens, revoke_refresh_token, rotate_refresh_token
from ...services.analytics import log_activity
from . import bp

logger = structlog.get_logger(__name__)

REFRESH_COOKIE = "refreshToken"

def role_required(*roles):
    def deco(f):
        @wraps(f)
        def wrapper(*args, **kwargs):
            if not current_user.is_authenticated:
                return login_manager.unauthorized()
            if current_user.role not in roles:
                abort(403, description="Insufficient permissions")
            return f(*args, **kwargs)
        return wrapper
    return deco

def _password(data, field="password"):
    pw = data.get(field) or ""
    if not isinstance(pw, str):
        raise ApiError(f"{field} must be a string")
    if len(pw) < current_app.config["PASSWORD_MIN_LENGTH"]:
        raise ApiError(f"Password must be at least "
                       f"{current_app.config['PASSWORD_MIN_LENGTH']} characters")
    return pw

def _auth_response(user, access, refresh, status=200):
    resp = jsonify({"success": True,
                    "data": {"user": user.to_dict(), "accessToken": access}})
    resp.status_code = status
    resp.set_cookie(REFRESH_COOKIE, refresh, httponly=True, samesite="Strict",
                    secure=current_app.config["REFRESH_COOKIE_SECURE"],
                    max_age=current_app.config["REFRESH_TOKEN_MAX_AGE"])
    return resp

def _refresh_token_from_request():
    return request.cookies.get(REFRESH_COOKIE) or json_body().get("refreshToken")

def _check_login(user, password):
    if not isinstance(password, str):
        raise ApiError("password must be a string")
    if user is None or not user.check_password(password):
        raise ApiError("Invalid credentials", 401)

@bp.post("/admin/register")
def register_admin():
    data = json_body()
    require_fields(data, "email", "password", "name")
    email = normalize_email(data["email"])
    pw = _password(data)
    if User.query.filter_by(email=email).one_or_none():
        raise ApiError("Email already registered")

    u = User(email=email, name=clean_str(data["name"]), role=ADMIN)
    u.set_password(pw)
    db.session.add(u)
    db.session.flush()
    access, refresh = issue_tokens(u)
    log_activity(u.id, "register", role=ADMIN)
    db.session.commit()
    logger.info("auth.admin_registered", user_id=u.id)
    return _auth_response(u, access, refresh, 201)

@bp.post("/facilitator/login")
def facilitator_login():
    data = json_body()
    require_fields(data, "email", "password", "accessCode")
    code = str(data["accessCode"]).strip().upper()
    if len(code) != 6:
        raise ApiError("Access code must be 6 characters")
    u = User.query.filter_by(email=normalize_email(data["email"])).one_or_none()
    if u is None or u.role != FACILITATOR:
        raise ApiError("Invalid credentials", 401)
    if u.access_code != code:
        raise ApiError("Invalid access code", 401)
    _check_login(u, data["password"])
    if not u.is_active:
        raise ApiError("Account is inactive", 403)

    access, refresh = issue_tokens(u)
    log_activity(u.id, "login", role=FACILITATOR)
    db.session.commit()
    logger.info("auth.login", user_id=u.id, role=u.role)
    return _auth_response(u, access, refresh)

@bp.post("/student/register")
def register_student():
    data = json_body()
    require_fields(data, "email", "password", "name", "inviteToken")
    email = normalize_email(data["email"])
    pw = _password(data)
    cohort = Cohort.query.filter_by(student_invite_link=str(data["inviteToken"]).strip(),
                                    is_active=True).one_or_none()
    if cohort is None:
        raise ApiError("Invalid or expired invite link")

    u = User.query.filter_by(email=email).one_or_none()
    if u is not None:
        if cohort.has_member(u.id):
            raise ApiError("Already enrolled in this cohort")
        _check_login(u, pw)
        if not u.is_active:
            raise ApiError("Account is inactive", 403)
        status = 200
    else:
        u = User(email=email, name=clean_str(data["name"]), role=STUDENT)
        u.set_password(pw)
        db.session.add(u)
        db.session.flush()
        status = 201

    db.session.add(CohortUser(cohort_id=cohort.id, user_id=u.id, role=MEMBER_STUDENT))
    access, refresh = issue_tokens(u)
    log_activity(u.id, "join_cohort", cohort_id=cohort.id)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ApiError("Already enrolled in this cohort")
    logger.info("auth.student_enrolled", user_id=u.id, cohort_id=cohort.id)
    return _auth_response(u, access, refresh, status)

@bp.post("/login")
def login():
    data = json_body()
    require_fields(data, "email", "password")
    u = User.query.filter_by(email=normalize_email(data["email"])).one_or_none()
    _check_login(u, data["password"])
    if not u.is_active:
        raise ApiError("Account is inactive", 403)

    access, refresh = issue_tokens(u)
    log_activity(u.id, "login", role=u.role)
    db.session.commit()
    logger.info("auth.login", user_id=u.id, role=u.role)
    return _auth_response(u, access, refresh)

@bp.post("/refresh")
def refresh():
    token = _refresh_token_from_request()
    if not token:
        raise ApiError("Refresh token required")
    user, access, new_refresh = rotate_refresh_token(token)
    return _auth_response(user, access, new_refresh)

@bp.post("/logout")
def logout():
    token = _refresh_token_from_request()
    if token:
        revoke_refresh_token(token)
    resp = jsonify({"success": True, "message": "Logged out successfully"})
    resp.delete_cookie(REFRESH_COOKIE)
    return resp

@bp.get("/me")
@login_required
def me():
    return ok(current_user.to_dict())

@bp.put("/password")
@login_required
def change_password():
    data = json_body()
    u = current_user
    current = data.get("currentPassword") or ""
    if not isinstance(current, str):
        raise ApiError("currentPassword must be a string")
    if not u.check_password(current):
        raise ApiError("Current password is incorrect")
    new = _password(data, "newPassword")
    u.set_password(new)
    # other sessions must log in again
    for t in list(u.refresh_tokens):
        db.session.delete(t)
    db.session.commit()
    logger.info("auth.password_changed", user_id=u.id)
    return ok(message="Password updated")
