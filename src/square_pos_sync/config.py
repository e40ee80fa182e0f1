"""
Configuration for the Square POS sync.

Values are read once, at the entry point, into frozen dataclasses that
are passed explicitly to the client, writer and orchestrator.
"""

import os
from dataclasses import dataclass
from datetime import timedelta

from dotenv import load_dotenv

DEFAULT_PROVIDER = "square"
DEFAULT_PROVIDER_ACCOUNT_ID = "default-square"
DEFAULT_API_VERSION = "2025-01-15"
DEFAULT_BASE_URL = "https://connect.squareup.com"
DEFAULT_TIMEOUT = 30.0
DEFAULT_RATE_LIMIT_BACKOFF = 10.0
DEFAULT_MAX_RATE_LIMIT_RETRIES = 10
DEFAULT_LOOKBACK_HOURS = 24.0
DEFAULT_DB_SCHEMA = "pos"


class ConfigError(Exception):
    """Raised when required configuration is missing or malformed."""
    pass


@dataclass(frozen=True)
class TenantScope:
    """Identifies whose data a row belongs to."""
    tenant_id: str
    provider: str = DEFAULT_PROVIDER
    provider_account_id: str = DEFAULT_PROVIDER_ACCOUNT_ID

    def as_columns(self) -> dict[str, str]:
        return {
            "tenant_id": self.tenant_id,
            "provider": self.provider,
            "provider_account_id": self.provider_account_id,
        }


@dataclass(frozen=True)
class SquareConfig:
    access_token: str
    api_version: str = DEFAULT_API_VERSION
    base_url: str = DEFAULT_BASE_URL
    timeout: float = DEFAULT_TIMEOUT
    rate_limit_backoff: float = DEFAULT_RATE_LIMIT_BACKOFF
    max_rate_limit_retries: int = DEFAULT_MAX_RATE_LIMIT_RETRIES


@dataclass(frozen=True)
class DatabaseConfig:
    url: str
    schema: str = DEFAULT_DB_SCHEMA


@dataclass(frozen=True)
class SyncConfig:
    tenant: TenantScope
    square: SquareConfig
    database: DatabaseConfig
    lookback_hours: float = DEFAULT_LOOKBACK_HOURS
    log_level: str = "INFO"

    @property
    def lookback(self) -> timedelta:
        return timedelta(hours=self.lookback_hours)


def normalize_database_url(url: str) -> str:
    """
    Point bare PostgreSQL URLs at the psycopg 3 driver.

    Hosted providers (Neon, Heroku) hand out ``postgres://`` URLs, which
    SQLAlchemy does not accept as-is.
    """
    for prefix in ("postgres://", "postgresql://"):
        if url.startswith(prefix):
            return "postgresql+psycopg://" + url[len(prefix):]
    return url


def _required(name: str) -> str:
    value = os.environ.get(name, "").strip()
    if not value:
        raise ConfigError(f"{name} environment variable is required")
    return value


def _float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}")


def _int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}")


def _schema() -> str:
    """
    Target schema; an explicitly empty DATABASE_SCHEMA means no schema
    (e.g. SQLite).
    """
    raw = os.environ.get("DATABASE_SCHEMA")
    if raw is None:
        return DEFAULT_DB_SCHEMA
    return raw.strip()


def load_config() -> SyncConfig:
    """
    Load sync configuration from environment variables (and ``.env``).

    Raises:
        ConfigError: If a required variable is missing or a number is malformed
    """
    load_dotenv()

    tenant = TenantScope(
        tenant_id=_required("TENANT_ID"),
        provider=os.environ.get("POS_PROVIDER") or DEFAULT_PROVIDER,
        provider_account_id=os.environ.get("POS_PROVIDER_ACCOUNT_ID") or DEFAULT_PROVIDER_ACCOUNT_ID,
    )

    square = SquareConfig(
        access_token=_required("SQUARE_ACCESS_TOKEN"),
        api_version=os.environ.get("SQUARE_API_VERSION") or DEFAULT_API_VERSION,
        base_url=(os.environ.get("SQUARE_BASE_URL") or DEFAULT_BASE_URL).rstrip("/"),
        timeout=_float("SQUARE_TIMEOUT", DEFAULT_TIMEOUT),
        rate_limit_backoff=_float("SQUARE_RATE_LIMIT_BACKOFF", DEFAULT_RATE_LIMIT_BACKOFF),
        max_rate_limit_retries=max(1, _int("SQUARE_MAX_RATE_LIMIT_RETRIES", DEFAULT_MAX_RATE_LIMIT_RETRIES)),
    )

    db_url = os.environ.get("DATABASE_URL") or os.environ.get("NEON_DATABASE_URL")
    if not db_url:
        raise ConfigError("DATABASE_URL (or NEON_DATABASE_URL) environment variable is required")

    database = DatabaseConfig(
        url=normalize_database_url(db_url.strip()),
        schema=_schema(),
    )

    lookback_hours = _float("SYNC_LOOKBACK_HOURS", DEFAULT_LOOKBACK_HOURS)
    if lookback_hours <= 0:
        raise ConfigError("SYNC_LOOKBACK_HOURS must be positive")

    return SyncConfig(
        tenant=tenant,
        square=square,
        database=database,
        lookback_hours=lookback_hours,
        log_level=(os.environ.get("LOG_LEVEL") or "INFO").upper(),
    )
