from collections import namedtuple
from flask import current_app
from flask_jwt_extended import get_jwt, get_jwt_identity
from flask_smorest import abort
import logging

from .enrollment import EnrollmentStore
from .errors import ServiceUnavailable
from .ledger import AttendanceLedger
from .local_store import SqliteStore
from .matcher import RecognitionMatcher
from .services import AuthService
from .store import SupabaseStore, get_supabase_client
from .sync import SyncService

logger = logging.getLogger(__name__)

STORE_KEY = "attendance_store"
NOTIFICATIONS_KEY = "attendance_notifications"

Principal = namedtuple("Principal", ["id", "role", "class_assigned"])


def build_store(config):
    backend = config.get("STORAGE_BACKEND", "supabase")
    if backend == "sqlite":
        return SqliteStore(config["SQLITE_PATH"], track_changes=config.get("SQLITE_TRACK_CHANGES", False))
    client = get_supabase_client(config.get("SUPABASE_URL"), config.get("SUPABASE_KEY"))
    if client is None:
        return None
    return SupabaseStore(client)


def get_store():
    store = current_app.extensions.get(STORE_KEY)
    if store is None:
        logger.critical("Attendance store not initialized")
        raise ServiceUnavailable("Database not configured")
    return store


def get_enrollment():
    return EnrollmentStore(get_store(), current_app.config["DESCRIPTOR_DIMENSION"])


def get_ledger():
    return AttendanceLedger(get_store(), get_enrollment(), current_app.config["SCHOOL_TIMEZONE"])


def get_matcher(class_name=None):
    return RecognitionMatcher(
        get_enrollment().list_enrolled(class_name),
        threshold=current_app.config["FACE_MATCH_THRESHOLD"],
        dimension=current_app.config["DESCRIPTOR_DIMENSION"],
    )


def get_sync_service():
    return SyncService(
        get_store(),
        current_app.config["DESCRIPTOR_DIMENSION"],
        pull_overlap=current_app.config["SYNC_PULL_OVERLAP"],
    )


def get_auth_service():
    return AuthService(get_store())


def get_notifications():
    return current_app.extensions[NOTIFICATIONS_KEY]


def current_principal():
    claims = get_jwt()
    return Principal(get_jwt_identity(), claims.get("role"), claims.get("class_assigned"))


def require_role(*roles):
    claims = get_jwt()
    if claims.get("role") not in roles:
        current_app.logger.warning(f"Unauthorized access attempt. Role: {claims.get('role')}")
        abort(403, message="Forbidden: wrong role")
