"""Shared fixtures for the unittest suites beside the code."""
import os
import tempfile
from unittest.mock import MagicMock

from flask_jwt_extended import create_access_token

from .config import Config
from .enrollment import EnrollmentStore
from .ledger import AttendanceLedger
from .local_store import SqliteStore
from .main import create_app
from .notifications import NotificationService

DIMENSION = 128


class TestConfig(Config):
    __test__ = False

    TESTING = True
    SECRET_KEY = "test-secret"
    JWT_SECRET_KEY = "test-jwt-secret-with-enough-length-for-hs256"
    STORAGE_BACKEND = "sqlite"
    SQLITE_PATH = ":memory:"
    SQLITE_TRACK_CHANGES = False
    RATELIMIT_ENABLED = False
    BCRYPT_LOG_ROUNDS = 4
    SCHOOL_TIMEZONE = "UTC"
    DEFAULT_GRACE_PERIOD = 15
    SYNC_PULL_OVERLAP = 0
    FACE_MATCH_THRESHOLD = 0.5
    DESCRIPTOR_DIMENSION = DIMENSION
    SMTP_HOST = None
    SMS_GATEWAY_URL = None
    ERROR_COUNTER_FILE = os.path.join(tempfile.gettempdir(), "attendance_test_error_counters.json")


def descriptor(*head, fill=0.0):
    """A DIMENSION-long descriptor starting with ``head`` and padded with ``fill``."""
    values = list(head) + [fill] * (DIMENSION - len(head))
    return values[:DIMENSION]


def make_services(store=None, timezone="UTC"):
    store = store or SqliteStore(":memory:")
    enrollment = EnrollmentStore(store, DIMENSION)
    return store, enrollment, AttendanceLedger(store, enrollment, timezone)


def make_app(store=None):
    """App wired to an in-memory store and a mocked NotificationService."""
    store = store or SqliteStore(":memory:")
    notifications = MagicMock(spec=NotificationService)
    notifications.dispatch.return_value = {
        "email": {"successful": 0, "failed": []},
        "sms": {"successful": 0, "failed": []},
    }
    app = create_app(TestConfig, store=store, notifications=notifications)
    return app, store, notifications


def auth_header(app, role="admin", identity="1", class_assigned=None):
    with app.app_context():
        claims = {"role": role, "email": f"{role}@school.edu"}
        if class_assigned is not None:
            claims["class_assigned"] = class_assigned
        token = create_access_token(identity=identity, additional_claims=claims)
    return {"Authorization": f"Bearer {token}"}
