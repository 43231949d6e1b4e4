import structlog
from flask import Flask, request
from .extensions import db, migrate, login_manager
from .http import fail, ok, register_error_handlers
from .models.common import utcnow

API_VERSION = "1.0.0"

logger = structlog.get_logger(__name__)

def register_health_route(app):
    @app.get("/api/health")
    def health():
        return ok(message="SkillLink API is running",
                  timestamp=utcnow().isoformat() + "Z", version=API_VERSION)

def create_app(config_object="config.Config"):
    app = Flask(__name__)
    app.config.from_object(config_object)

    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)

    from . import models
    from .models.user import User
    from .security import load_access_token

    @login_manager.request_loader
    def load_user_from_request(req):
        header = req.headers.get("Authorization", "")
        if not header.startswith("Bearer "):
            return None
        payload = load_access_token(header.split(" ", 1)[1].strip())
        if payload is None:
            return None
        user = db.session.get(User, payload.get("uid"))
        if user is None or not user.is_active:
            return None
        return user

    @login_manager.unauthorized_handler
    def unauthorized():
        return fail("Authentication required", 401)

    from .blueprints.auth import bp as auth_bp
    from .blueprints.admin import bp as admin_bp
    from .blueprints.facilitator import bp as facilitator_bp
    from .blueprints.cohorts import bp as cohorts_bp
    from .blueprints.assignments import bp as assignments_bp
    from .blueprints.attendance import bp as attendance_bp
    from .blueprints.forum import bp as forum_bp
    from .blueprints.gamification import bp as gamification_bp
    from .blueprints.analytics import bp as analytics_bp
    from .blueprints.student import bp as student_bp
    app.register_blueprint(auth_bp, url_prefix="/api/auth")
    app.register_blueprint(admin_bp, url_prefix="/api/admin")
    app.register_blueprint(facilitator_bp, url_prefix="/api/facilitator")
    app.register_blueprint(cohorts_bp, url_prefix="/api/cohorts")
    app.register_blueprint(assignments_bp, url_prefix="/api/assignments")
    app.register_blueprint(attendance_bp, url_prefix="/api/attendance")
    app.register_blueprint(forum_bp, url_prefix="/api/forum")
    app.register_blueprint(gamification_bp, url_prefix="/api/gamification")
    app.register_blueprint(analytics_bp, url_prefix="/api/analytics")
    app.register_blueprint(student_bp, url_prefix="/api/student")
    register_health_route(app)
    register_error_handlers(app)

    @app.after_request
    def log_request(response):
        logger.debug("request.completed", method=request.method,
                     path=request.path, status=response.status_code)
        return response

    return app
