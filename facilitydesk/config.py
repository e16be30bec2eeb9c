import os


def _bool_env(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _int_env(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


class Config:
    BASE_DIR = os.path.dirname(os.path.dirname(__file__))
    DATABASE_URL = os.environ.get("DATABASE_URL")
    DATABASE_DIR = None if DATABASE_URL else os.path.join(BASE_DIR, "database")
    DB_PATH = DATABASE_URL or os.path.join(DATABASE_DIR, "facilitydesk.db")
    DB_AUTO_INIT = _bool_env("DB_AUTO_INIT", True)
    SQLITE_BUSY_TIMEOUT_SECONDS = _int_env("SQLITE_BUSY_TIMEOUT_SECONDS", 30)

    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-facilitydesk")
    AUTH_ENABLED = _bool_env("AUTH_ENABLED", True)
    # Prototype/integration path: trust X-Principal-Id set by an upstream gateway.
    AUTH_HEADER_ENABLED = _bool_env("AUTH_HEADER_ENABLED", True)

    LOG_JSON = _bool_env("LOG_JSON", True)
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    QUOTE_VALIDITY_DAYS = _int_env("QUOTE_VALIDITY_DAYS", 30)
    ORDER_TAX_RATE_PERCENT = _int_env("ORDER_TAX_RATE_PERCENT", 20)

    NOTIFICATION_WORKER_ENABLED = _bool_env("NOTIFICATION_WORKER_ENABLED", True)
    NOTIFICATION_WORKER_INTERVAL_SECONDS = _int_env("NOTIFICATION_WORKER_INTERVAL_SECONDS", 15)
    NOTIFICATION_WORKER_BATCH_SIZE = _int_env("NOTIFICATION_WORKER_BATCH_SIZE", 25)
    NOTIFICATION_MAX_ATTEMPTS = _int_env("NOTIFICATION_MAX_ATTEMPTS", 5)

    MAIL_HOST = os.environ.get("MAIL_HOST")
    MAIL_PORT = _int_env("MAIL_PORT", 587)
    MAIL_USERNAME = os.environ.get("MAIL_USERNAME")
    MAIL_PASSWORD = os.environ.get("MAIL_PASSWORD")
    MAIL_USE_TLS = _bool_env("MAIL_USE_TLS", True)
    MAIL_SENDER = os.environ.get("MAIL_SENDER", "no-reply@facilitydesk.local")
    FRONTEND_URL = os.environ.get("FRONTEND_URL", "http://localhost:3000")

    def __init__(self):
        env = os.environ.get("FLASK_ENV", "development").lower()
        if env == "production" and not self.DATABASE_URL:
            raise RuntimeError("DATABASE_URL is not set for production.")
        if env == "production" and self.SECRET_KEY == "dev-secret-facilitydesk":
            raise RuntimeError("SECRET_KEY is insecure for production.")
