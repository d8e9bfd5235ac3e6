import os

from dotenv import load_dotenv


load_dotenv()


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int_set(value: str | None, default: str = "") -> frozenset[int]:
    raw = default if value is None else value
    return frozenset(int(part) for part in raw.split(",") if part.strip())


APP_ENV = os.getenv("APP_ENV", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./doctor_availability.db")
# "sql" or "memory"
SCHEDULE_STORE_BACKEND = os.getenv("SCHEDULE_STORE_BACKEND", "sql").strip().lower()

CORS_ALLOW_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ALLOW_ORIGINS", "http://localhost:5173").split(",")
    if origin.strip()
]

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_MINUTES = int(os.getenv("JWT_EXPIRES_MINUTES", "60"))

TOKEN_RESERVE_MAX_ATTEMPTS = int(os.getenv("TOKEN_RESERVE_MAX_ATTEMPTS", "5"))
TOKEN_RESERVE_BACKOFF_SECONDS = float(os.getenv("TOKEN_RESERVE_BACKOFF_SECONDS", "0.02"))
REQUEST_TIMEOUT_SECONDS = float(os.getenv("REQUEST_TIMEOUT_SECONDS", "5"))

ALMOST_FULL_PERCENT = int(os.getenv("ALMOST_FULL_PERCENT", "80"))
# Allowed drift between hoursAvailable and endTime - startTime, in hours.
HOURS_TOLERANCE = float(os.getenv("HOURS_TOLERANCE", "0.05"))
# 0 = Sunday ... 6 = Saturday
CLOSED_DAYS = _get_int_set(os.getenv("CLOSED_DAYS"), default="0")

AUDIT_LOG_PERSIST = _get_bool(os.getenv("AUDIT_LOG_PERSIST"), default=True)


def validate_runtime_config() -> None:
    if APP_ENV.lower() == "production" and JWT_SECRET_KEY == "change-me":
        raise RuntimeError("JWT_SECRET_KEY must be set in production.")
    if SCHEDULE_STORE_BACKEND not in {"sql", "memory"}:
        raise RuntimeError("SCHEDULE_STORE_BACKEND must be 'sql' or 'memory'.")
    if TOKEN_RESERVE_MAX_ATTEMPTS < 1:
        raise RuntimeError("TOKEN_RESERVE_MAX_ATTEMPTS must be at least 1.")
