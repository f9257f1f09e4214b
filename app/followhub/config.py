import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str
    log_level: str

    session_cookie_name: str
    session_lifetime_hours: int
    password_hash_method: str
    auto_create_schema: bool


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getenv_int(name: str, default: int) -> int:
    raw = _getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _getenv_bool(name: str, default: bool) -> bool:
    raw = _getenv(name).lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")


def load_settings() -> Settings:
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///followhub.db"),
        log_level=_getenv("LOG_LEVEL", "INFO").upper(),
        session_cookie_name=_getenv("SESSION_COOKIE_NAME", "followhub_session"),
        session_lifetime_hours=_getenv_int("SESSION_LIFETIME_HOURS", 24),
        # scrypt at werkzeug's default work factor costs about what bcrypt cost 10 does.
        password_hash_method=_getenv("PASSWORD_HASH_METHOD", "scrypt:32768:8:1"),
        auto_create_schema=_getenv_bool("AUTO_CREATE_SCHEMA", True),
    )


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "LOG_LEVEL": s.log_level,
        "PASSWORD_HASH_METHOD": s.password_hash_method,
        "AUTO_CREATE_SCHEMA": s.auto_create_schema,
        # server-side session cookie
        "FOLLOWHUB_SESSION_COOKIE": s.session_cookie_name,
        "FOLLOWHUB_SESSION_LIFETIME_HOURS": s.session_lifetime_hours,
        # security defaults
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": is_production,  # Require HTTPS in production
        "MAX_CONTENT_LENGTH": 1 * 1024 * 1024,
    }
