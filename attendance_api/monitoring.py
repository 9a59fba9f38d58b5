from flask import current_app, jsonify
import logging

from .utils import STORE_KEY

logger = logging.getLogger(__name__)


def check_database():
    """Report whether the configured store answers a trivial query."""
    store = current_app.extensions.get(STORE_KEY)
    if store is None:
        return "not_configured"
    try:
        store.ping()
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return "unreachable"
    return "connected"


def register_monitoring(app):
    @app.route("/")
    def index():
        return "Attendance backend up"

    @app.route("/health")
    def health():
        database = check_database()
        status = "healthy" if database == "connected" else "degraded"
        return jsonify({
            "status": status,
            "service": "attendance-service",
            "database": database,
        })
