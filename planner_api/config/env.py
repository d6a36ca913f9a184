"""Environment variable resolution utilities.

Canonical env names + fail-fast validation. Secrets are read on demand so
tests can monkeypatch the environment; missing secrets raise
ConfigurationError whose message names the variable but never its value.
"""

import os
from decimal import Decimal, InvalidOperation
from typing import Optional

from planner_api.errors import ConfigurationError

_PRODUCTION_ENVS = frozenset({"prod", "production"})
_DEVELOPMENT_ENVS = frozenset({"local", "dev", "development", "test"})


def get_planner_env() -> str:
    """Get the execution environment name.

    Priority:
    1. PLANNER_ENV (canonical)
    2. Default: "production"

    Relaxed behaviour (unsigned webhooks, error detail in responses) is
    opt-in: a deployment that forgets PLANNER_ENV runs as production.

    Returns:
        Environment name (lowercase)
    """
    return (os.getenv("PLANNER_ENV") or "").strip().lower() or "production"


def is_production_env() -> bool:
    """True when PLANNER_ENV is prod/production, or unset."""
    return get_planner_env() in _PRODUCTION_ENVS


def is_development_env() -> bool:
    """True for local/dev/development/test.

    Staging is neither production nor development: it gets production error
    masking and strict webhook signatures, but may use SQLite.
    """
    return get_planner_env() in _DEVELOPMENT_ENVS


def _require(name: str) -> str:
    value = os.getenv(name)
    if not value:
        raise ConfigurationError(
            f"{name} is required. Set {name} in your environment configuration."
        )
    return value


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer")


# ============================================================================
# Entitlement tokens
# ============================================================================


def get_jwt_secret() -> str:
    """Signing secret for entitlement tokens.

    Raises:
        ConfigurationError: If JWT_SECRET is not set
    """
    return _require("JWT_SECRET")


def get_entitlement_ttl_days() -> int:
    """Lifetime of payment-backed tokens ("pay once, keep access")."""
    return _int_env("ENTITLEMENT_TOKEN_TTL_DAYS", 365)


def get_beta_token_ttl_hours() -> int:
    return _int_env("BETA_TOKEN_TTL_HOURS", 24)


def get_beta_code() -> Optional[str]:
    """Fixed override code granting entitlement without payment (None = disabled)."""
    return os.getenv("BETA_CODE") or None


def get_coupon_codes() -> frozenset[str]:
    """Valid coupon codes from COUPON_CODES (comma-separated)."""
    raw = os.getenv("COUPON_CODES", "")
    return frozenset(code.strip() for code in raw.split(",") if code.strip())


def get_coupon_discount_amount() -> str:
    raw = os.getenv("COUPON_DISCOUNT_AMOUNT", "0.01")
    try:
        Decimal(raw)
    except InvalidOperation:
        raise ConfigurationError("COUPON_DISCOUNT_AMOUNT must be numeric")
    return raw


# ============================================================================
# Payment providers
# ============================================================================


def get_default_provider() -> str:
    return (os.getenv("DEFAULT_PAYMENT_PROVIDER") or "kryptogo").strip().lower()


def get_provider_timeout() -> float:
    """Outbound provider call timeout in seconds (bounded, never infinite)."""
    raw = os.getenv("PROVIDER_HTTP_TIMEOUT_SECONDS", "10")
    try:
        timeout = float(raw)
    except ValueError:
        raise ConfigurationError("PROVIDER_HTTP_TIMEOUT_SECONDS must be numeric")
    if timeout <= 0:
        raise ConfigurationError("PROVIDER_HTTP_TIMEOUT_SECONDS must be positive")
    return timeout


def get_webhook_secret(provider: str) -> Optional[str]:
    """Shared webhook secret for a provider.

    Canonical: <PROVIDER>_WEBHOOK_SECRET (e.g. KRYPTOGO_WEBHOOK_SECRET)
    Fallback: WEBHOOK_SECRET

    Returns None when neither is set; the caller decides whether that is a
    configuration error (it is whenever signatures are required).
    """
    env_key = {
        "lemonsqueezy": "LEMON_SQUEEZY_WEBHOOK_SECRET",
        "kryptogo": "KRYPTOGO_WEBHOOK_SECRET",
    }.get(provider)
    secret = os.getenv(env_key) if env_key else None
    return secret or os.getenv("WEBHOOK_SECRET") or None


# ============================================================================
# Storage / infrastructure
# ============================================================================


def get_ledger_backend() -> str:
    backend = (os.getenv("LEDGER_BACKEND") or "memory").strip().lower()
    if backend not in {"memory", "sql"}:
        raise ConfigurationError("LEDGER_BACKEND must be 'memory' or 'sql'")
    return backend


def get_database_url() -> str:
    """SQLAlchemy URL for the SQL ledger backend.

    Defaults to a process-local SQLite database; data does not outlive the
    process unless a file or server URL is configured.
    """
    return os.getenv("DATABASE_URL") or "sqlite://"


def get_redis_url() -> Optional[str]:
    return os.getenv("REDIS_URL") or None


def get_report_rate_limit() -> tuple[int, int]:
    """(quota, window_seconds) for report generation per client IP."""
    return (
        _int_env("REPORT_RATE_LIMIT_QUOTA", 10),
        _int_env("REPORT_RATE_LIMIT_WINDOW_SECONDS", 24 * 60 * 60),
    )


def get_rate_limit_allowlist() -> frozenset[str]:
    raw = os.getenv("RATE_LIMIT_ALLOWLIST", "127.0.0.1,::1")
    return frozenset(ip.strip() for ip in raw.split(",") if ip.strip())


def get_audit_file_dir() -> Optional[str]:
    """Directory for file-backed audit records (None = in-memory sink)."""
    return os.getenv("AUDIT_FILE_DIR") or None


# ============================================================================
# HTTP surface / logging
# ============================================================================


def get_cors_allowed_origins() -> list[str]:
    """Explicit allowlist (comma-separated); localhost variants when unset."""
    raw = os.getenv("CORS_ALLOWED_ORIGINS", "")
    origins = [origin.strip() for origin in raw.split(",") if origin.strip()]
    return origins or [
        "http://localhost:3000",
        "http://localhost:5173",
        "http://127.0.0.1:3000",
        "http://127.0.0.1:5173",
    ]


def json_logs_enabled() -> bool:
    return os.getenv("PLANNER_JSON_LOGS", "true").strip().lower() not in {"0", "false", "no"}


def get_log_level() -> str:
    return (os.getenv("LOG_LEVEL") or "INFO").strip().upper()
