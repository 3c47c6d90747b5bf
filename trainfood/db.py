"""
Database layer — shared declarative base and engine setup.

Table modules (catalog, schedule, orders) register on ``Base``; importing
them before ``create_database`` makes ``create_all`` see every table.
"""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase


# ═══════════════════════════════════════════════════════════════════════════════
# Base
# ═══════════════════════════════════════════════════════════════════════════════

class Base(DeclarativeBase):
    pass


# ═══════════════════════════════════════════════════════════════════════════════
# Database Setup
# ═══════════════════════════════════════════════════════════════════════════════

def _register_tables() -> None:
    # Imported for their side effect on Base.metadata
    import trainfood.catalog._sqlalchemy  # noqa: F401
    import trainfood.schedule._sqlalchemy  # noqa: F401
    import trainfood.orders._sqlalchemy  # noqa: F401


async def create_database(
    url: str = "sqlite+aiosqlite:///:memory:",
) -> tuple[async_sessionmaker[AsyncSession], AsyncEngine]:
    """Create all tables and return (session_factory, engine)."""
    _register_tables()
    engine = create_async_engine(url, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    return async_sessionmaker(engine, expire_on_commit=False), engine


def dialect_name(engine: AsyncEngine) -> str:
    return engine.dialect.name


__all__ = ("Base", "create_database", "dialect_name")
