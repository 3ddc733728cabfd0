"""Idempotent schema bootstrap: tables, index and the ``users_last_ip`` view."""

from __future__ import annotations

import structlog
from sqlalchemy.engine import Dialect
from sqlalchemy.ext.asyncio import AsyncEngine

from puipr.db.base import Base
from puipr.db.projection import last_ip_select

logger = structlog.get_logger()

LAST_IP_VIEW = "users_last_ip"


def last_ip_view_ddl(dialect: Dialect) -> str:
    """Render the CREATE VIEW statement for the last-IP projection."""
    body = last_ip_select().compile(dialect=dialect, compile_kwargs={"literal_binds": True})
    if dialect.name == "postgresql":
        return f"CREATE OR REPLACE VIEW {LAST_IP_VIEW} AS {body}"
    return f"CREATE VIEW IF NOT EXISTS {LAST_IP_VIEW} AS {body}"


async def ensure_schema(engine: AsyncEngine) -> None:
    """Create tables, indexes and the derived view if they do not exist yet."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        await conn.exec_driver_sql(last_ip_view_ddl(engine.dialect))
    logger.info("schema_ready", dialect=engine.dialect.name)
