import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str
    log_level: str

    compliance_warning_days: int
    training_due_within_days: int
    webhook_timeout_seconds: int


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getenv_int(name: str, default: int) -> int:
    raw = _getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer (got {raw!r}).")


def load_settings() -> Settings:
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///sms.db"),
        log_level=_getenv("LOG_LEVEL", "INFO").upper(),
        compliance_warning_days=_getenv_int("COMPLIANCE_WARNING_DAYS", 30),
        training_due_within_days=_getenv_int("TRAINING_DUE_WITHIN_DAYS", 30),
        webhook_timeout_seconds=_getenv_int("WEBHOOK_TIMEOUT_SECONDS", 10),
    )


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "LOG_LEVEL": s.log_level,
        "COMPLIANCE_WARNING_DAYS": s.compliance_warning_days,
        "TRAINING_DUE_WITHIN_DAYS": s.training_due_within_days,
        "WEBHOOK_TIMEOUT_SECONDS": s.webhook_timeout_seconds,
        # security defaults
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": is_production,
        "JSON_SORT_KEYS": False,
    }
