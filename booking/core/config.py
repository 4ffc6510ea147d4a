import os
from datetime import time



def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_time(value: str | None, default: time) -> time:
    if not value:
        return default
    hours, minutes = value.strip().split(":")[:2]
    return time(int(hours), int(minutes))


def _get_list(value: str | None, default: list[str]) -> list[str]:
    if not value:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]

APP_ENV = os.getenv("APP_ENV", "development")
APP_TIMEZONE = os.getenv("APP_TIMEZONE", "UTC")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

CORS_ALLOW_ORIGINS = _get_list(os.getenv("CORS_ALLOW_ORIGINS"), ["http://localhost:3000"])

# Tokens are issued by the external auth provider; we only verify them.
JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_AUDIENCE = os.getenv("JWT_AUDIENCE") or None
JWT_EXPIRES_MINUTES = int(os.getenv("JWT_EXPIRES_MINUTES", "60"))

SLOT_DURATION_MINUTES = int(os.getenv("SLOT_DURATION_MINUTES", "30"))
DEFAULT_OPEN_TIME = _get_time(os.getenv("DEFAULT_OPEN_TIME"), time(9, 0))
DEFAULT_CLOSE_TIME = _get_time(os.getenv("DEFAULT_CLOSE_TIME"), time(17, 0))

DEFAULT_PAGE_SIZE = int(os.getenv("DEFAULT_PAGE_SIZE", "10"))
RECENT_RESERVATIONS_LIMIT = 5

def validate_runtime_config() -> None:
    if APP_ENV.lower() == "production" and JWT_SECRET_KEY == "change-me":
        raise RuntimeError("JWT_SECRET_KEY must be set in production.")
    if DEFAULT_OPEN_TIME >= DEFAULT_CLOSE_TIME:
        raise RuntimeError("DEFAULT_OPEN_TIME must be earlier than DEFAULT_CLOSE_TIME.")
