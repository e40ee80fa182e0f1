"""Engine creation and schema bootstrap."""

from typing import Any

import structlog
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.schema import CreateSchema

from square_pos_sync.config import DatabaseConfig
from square_pos_sync.schema import SCHEMA, metadata

logger = structlog.get_logger(__name__)


def create_db_engine(config: DatabaseConfig, **kwargs: Any) -> Engine:
    """
    Create a SQLAlchemy engine for the configured store.

    Tables are declared in the ``pos`` schema; a different configured
    schema (or None, for SQLite) is applied via ``schema_translate_map``.
    """
    engine = create_engine(config.url, pool_pre_ping=True, **kwargs)
    target = config.schema or None
    if target != SCHEMA:
        engine = engine.execution_options(schema_translate_map={SCHEMA: target})
    return engine


def ensure_schema(engine: Engine, schema: str | None = SCHEMA) -> None:
    """Create the schema (PostgreSQL only) and any missing tables."""
    with engine.begin() as conn:
        if schema and conn.dialect.name == "postgresql":
            conn.execute(CreateSchema(schema, if_not_exists=True))
        metadata.create_all(conn)
    logger.info("Schema ready", schema=schema, tables=sorted(t.name for t in metadata.sorted_tables))
