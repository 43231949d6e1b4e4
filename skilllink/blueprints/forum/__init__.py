from flask import Blueprint

bp = Blueprint("forum", __name__)

from . import routes  # noqa: E402,F401
