from datetime import datetime, timezone
from flask import Flask, jsonify, request
from flask_cors import CORS
from flask_smorest import Api
from werkzeug.exceptions import HTTPException
import logging
import sys

from .attendance_routes import blp as AttendanceBlueprint
from .auth_routes import blp as AuthBlueprint
from .config import Config
from .error_manager import error_manager
from .errors import AttendanceError
from .extensions import bcrypt, jwt, limiter
from .monitoring import register_monitoring
from .notifications import NotificationService
from .routes import blp as StudentBlueprint
from .sync_routes import blp as SyncBlueprint
from .utils import NOTIFICATIONS_KEY, STORE_KEY, build_store


def setup_logging(app):
    # ErrorManager writes the structured error blocks; this covers general app logs
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
    ))
    app.logger.handlers = [handler]
    app.logger.setLevel(logging.DEBUG if app.debug else logging.INFO)
    package_logger = logging.getLogger("attendance_api")
    package_logger.handlers = [handler]
    package_logger.setLevel(logging.DEBUG if app.debug else logging.INFO)
    logging.getLogger("ErrorSystem").handlers = [handler]


def _error_response(code, message, exception, extra=None):
    context = {"url": request.url, "method": request.method, "remote_addr": request.remote_addr}
    error_code, _ = error_manager.log_error(code, message, exception=exception, context=context)
    response = {
        "code": code,
        "error_code": error_code,
        "message": message,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "context": context,
        "status": "error",
    }
    if extra:
        response.update(extra)
    return jsonify(response), code


def register_error_handlers(app):
    @app.errorhandler(AttendanceError)
    def handle_attendance_error(e):
        extra = {"details": e.details} if e.details else None
        return _error_response(e.status_code, e.message, e, extra)

    @app.errorhandler(HTTPException)
    def handle_http_exception(e):
        data = getattr(e, "data", None) or {}
        extra = {"errors": data["messages"]} if "messages" in data else None
        message = data.get("message") or e.description
        return _error_response(e.code, message, e, extra)

    @app.errorhandler(Exception)
    def handle_generic_exception(e):
        return _error_response(500, f"{type(e).__name__}: {str(e)}", e)


def create_app(config_object=Config, store=None, notifications=None):
    app = Flask(__name__)
    app.config.from_object(config_object)

    setup_logging(app)
    try:
        config_object.validate()
    except ValueError as e:
        app.logger.error(f"Configuration Error: {e}")

    error_manager.configure(app.config)
    app.logger.info("Starting Attendance Service API...")

    CORS(app, resources={r"/*": {"origins": "*"}})
    bcrypt.init_app(app)
    jwt.init_app(app)
    limiter.init_app(app)

    if store is None:
        try:
            store = build_store(app.config)
        except Exception as e:
            app.logger.error(f"Failed to initialize attendance store: {e}")
    if store is None:
        app.logger.warning("No attendance store configured; data routes will answer 503")
    app.extensions[STORE_KEY] = store
    app.extensions[NOTIFICATIONS_KEY] = notifications or NotificationService.from_config(app.config)

    api = Api(app)
    api.register_blueprint(AuthBlueprint)
    api.register_blueprint(StudentBlueprint)
    api.register_blueprint(AttendanceBlueprint)
    api.register_blueprint(SyncBlueprint)
    register_monitoring(app)

    register_error_handlers(app)

    return app


if __name__ == "__main__":
    create_app().run(host="0.0.0.0", port=5000)
