import os
from datetime import timedelta
from dotenv import load_dotenv

load_dotenv()


def _env_flag(name, default="false"):
    return os.getenv(name, default).lower() in ("1", "true", "yes")


class Config:
    API_TITLE = "Attendance Service API"
    API_VERSION = "v1"
    OPENAPI_VERSION = "3.0.2"
    OPENAPI_URL_PREFIX = "/"
    OPENAPI_SWAGGER_UI_PATH = "/swagger-ui"
    OPENAPI_SWAGGER_UI_URL = "https://cdn.jsdelivr.net/npm/swagger-ui-dist/"

    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key")
    JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "dev-jwt-secret-key")
    JWT_ACCESS_TOKEN_EXPIRES = timedelta(hours=int(os.getenv("JWT_EXPIRES_HOURS", "8")))

    # Storage: "supabase" for the central server, "sqlite" for an offline node
    STORAGE_BACKEND = os.getenv("STORAGE_BACKEND", "supabase")
    SQLITE_PATH = os.getenv("SQLITE_PATH", "attendance_local.db")
    SQLITE_TRACK_CHANGES = _env_flag("SQLITE_TRACK_CHANGES")

    # Offline node: where sync_client pushes its outbox
    SYNC_SERVER_URL = os.getenv("SYNC_SERVER_URL")
    SYNC_TOKEN = os.getenv("SYNC_TOKEN")
    # Server: seconds re-read before a client's marker on each pull
    SYNC_PULL_OVERLAP = float(os.getenv("SYNC_PULL_OVERLAP", "5"))

    SUPABASE_URL = os.getenv("SUPABASE_URL")
    SUPABASE_KEY = os.getenv("SUPABASE_SERVICE_KEY") or os.getenv("SUPABASE_KEY")

    # Used by migrate.py to create the Postgres schema behind Supabase
    DB_HOST = os.getenv("DB_HOST", "localhost")
    DB_NAME = os.getenv("DB_NAME", "attendance_db")
    DB_PASSWORD = os.getenv("DB_PASSWORD")
    DB_PORT = os.getenv("DB_PORT", "5432")
    DB_USER = os.getenv("DB_USER", "postgres")

    # Recognition and classification
    FACE_MATCH_THRESHOLD = float(os.getenv("FACE_MATCH_THRESHOLD", "0.5"))
    DESCRIPTOR_DIMENSION = int(os.getenv("DESCRIPTOR_DIMENSION", "128"))
    DEFAULT_GRACE_PERIOD = int(os.getenv("DEFAULT_GRACE_PERIOD", "15"))
    SCHOOL_TIMEZONE = os.getenv("SCHOOL_TIMEZONE", "UTC")

    # Notifications
    SCHOOL_NAME = os.getenv("SCHOOL_NAME", "Your School")
    SMTP_HOST = os.getenv("SMTP_HOST")
    SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
    SMTP_USER = os.getenv("SMTP_USER")
    SMTP_PASSWORD = os.getenv("SMTP_PASSWORD")
    SMTP_USE_TLS = _env_flag("SMTP_USE_TLS", "true")
    MAIL_SENDER = os.getenv("MAIL_SENDER", "attendance@localhost")
    SMS_GATEWAY_URL = os.getenv("SMS_GATEWAY_URL")
    SMS_API_KEY = os.getenv("SMS_API_KEY")
    SMS_SENDER_ID = os.getenv("SMS_SENDER_ID", "ATTEND")
    NOTIFICATION_TIMEOUT = float(os.getenv("NOTIFICATION_TIMEOUT", "10"))

    ERROR_COUNTER_FILE = os.getenv("ERROR_COUNTER_FILE", "error_counters.json")
    RATELIMIT_ENABLED = _env_flag("RATELIMIT_ENABLED", "true")
    RATELIMIT_STORAGE_URI = os.getenv("RATELIMIT_STORAGE_URI", "memory://")
    LOGIN_RATE_LIMIT = os.getenv("LOGIN_RATE_LIMIT", "10 per minute")

    @classmethod
    def validate(cls):
        required_vars = ["SECRET_KEY", "JWT_SECRET_KEY"]
        if cls.STORAGE_BACKEND == "supabase":
            required_vars += ["SUPABASE_URL", "SUPABASE_KEY"]
        elif cls.STORAGE_BACKEND == "sqlite":
            required_vars += ["SQLITE_PATH"]
        else:
            raise ValueError(f"Unknown STORAGE_BACKEND: {cls.STORAGE_BACKEND}")
        missing = [var for var in required_vars if not getattr(cls, var)]
        if missing:
            raise ValueError(f"Missing required environment variables: {', '.join(missing)}")
