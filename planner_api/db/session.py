"""Database engine and session factory for the SQL ledger.

Production fail-fast: DATABASE_URL is mandatory when LEDGER_BACKEND=sql in
prod/production. Elsewhere an in-memory SQLite database is used.
"""

import re
from typing import Optional

from sqlalchemy import Engine, NullPool, StaticPool, create_engine
from sqlalchemy.orm import Session, sessionmaker

from planner_api.config.env import get_database_url, is_production_env
from planner_api.errors import ConfigurationError


def mask_password(url: str) -> str:
    """Mask password in database URL for safe logging."""
    return re.sub(r"://([^:]+):([^@]+)@", r"://\1:***@", url)


def build_engine(database_url: Optional[str] = None) -> Engine:
    """Build an engine for the ledger database.

    In-memory SQLite shares one connection (StaticPool) so every session
    sees the same tables; everything else uses NullPool.
    """
    url = database_url or get_database_url()
    if is_production_env() and url.startswith("sqlite"):
        raise ConfigurationError(
            "DATABASE_URL must point at a server database in production, "
            f"got {mask_password(url)}"
        )

    if url.startswith("sqlite"):
        in_memory = url in ("sqlite://", "sqlite:///:memory:")
        return create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool if in_memory else NullPool,
        )
    return create_engine(url, poolclass=NullPool, pool_pre_ping=True)


def build_sessionmaker(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
