"""JSON envelope, request parsing helpers and error handlers.

Every response leaves the API as ``{"success": ..., "data"|"message": ...}``.
"""
import math
import re
from datetime import date, datetime

import structlog
from flask import jsonify, request
from werkzeug.exceptions import HTTPException

logger = structlog.get_logger(__name__)

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class ApiError(Exception):
    """An error that maps onto an HTTP status and a client-facing message."""

    def __init__(self, message, status_code=400, errors=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.errors = errors


def ok(data=None, status=200, message=None, **extra):
    body = {"success": True}
    if data is not None:
        body["data"] = data
    if message:
        body["message"] = message
    body.update(extra)
    return jsonify(body), status


def fail(message, status, errors=None):
    body = {"success": False, "message": message}
    if errors:
        body["errors"] = errors
    return jsonify(body), status


def register_error_handlers(app):
    @app.errorhandler(ApiError)
    def handle_api_error(e):
        return fail(e.message, e.status_code, e.errors)

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        return fail(e.description or e.name, e.code)

    @app.errorhandler(Exception)
    def handle_unexpected(e):
        logger.error("request.unhandled_error", path=request.path,
                     method=request.method, exc_info=e)
        return fail("Internal server error", 500)


# ---------- request parsing ----------

def json_body():
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ApiError("Request body must be a JSON object")
    return data


def require_fields(data, *names):
    missing = [n for n in names if data.get(n) in (None, "")
               or (isinstance(data.get(n), str) and not data.get(n).strip())]
    if missing:
        raise ApiError("Validation failed", 400,
                       [{"field": n, "message": f"{n} is required"} for n in missing])


def clean_str(value):
    return value.strip() if isinstance(value, str) else value


def valid_email(value):
    return isinstance(value, str) and bool(EMAIL_RE.match(value.strip()))


def normalize_email(value):
    if not valid_email(value):
        raise ApiError("A valid email is required")
    return value.strip().lower()


def parse_datetime(value, field="date"):
    """Parse an ISO-8601 string (a trailing ``Z`` is accepted) to naive UTC."""
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str) or not value.strip():
        raise ApiError(f"{field} must be an ISO-8601 date")
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(text)
    except ValueError:
        raise ApiError(f"{field} must be an ISO-8601 date")
    if dt.tzinfo is not None:
        dt = (dt - dt.utcoffset()).replace(tzinfo=None)
    return dt


def parse_date(value, field="date"):
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    return parse_datetime(value, field).date()


def parse_int(value, field):
    if isinstance(value, bool):
        raise ApiError(f"{field} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ApiError(f"{field} must be an integer")


def parse_number(value, field):
    if isinstance(value, bool):
        raise ApiError(f"{field} must be a number")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ApiError(f"{field} must be a number")
    if not math.isfinite(number):
        raise ApiError(f"{field} must be a finite number")
    return number


def arg_date(name):
    raw = request.args.get(name)
    return parse_date(raw, name) if raw else None


def paginate(query, sort_map, default_sort, default_order="asc"):
    """Apply the q-less part of list handling: sort, order, page, perPage."""
    sort  = request.args.get("sort", default_sort)
    order = request.args.get("order", default_order)
    page  = max(request.args.get("page", type=int) or 1, 1)
    per   = min(max(request.args.get("perPage", type=int) or 20, 1), 100)

    col = sort_map.get(sort, sort_map[default_sort])
    query = query.order_by(col.desc() if order == "desc" else col.asc())

    total = query.count()
    items = query.offset((page - 1) * per).limit(per).all()
    pages = max(1, (total + per - 1) // per)
    return items, {"page": page, "perPage": per, "total": total, "pages": pages,
                   "sort": sort, "order": order}
