"""
Agency back-office — Async SQLAlchemy database setup.

The engine is owned by a ``Database`` object created in the application
lifespan and stored on ``app.state.db``.
"""

from typing import AsyncIterator

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


class Database:
    """One async engine plus its session factory."""

    def __init__(self, url: str, echo: bool = False):
        self.url = url
        self.engine = create_async_engine(
            url,
            echo=echo,
            # pool settings only for postgres
            **(
                {}
                if "sqlite" in url
                else {
                    "pool_size": 5,
                    "max_overflow": 10,
                    "pool_pre_ping": True,
                    "pool_recycle": 300,
                }
            ),
        )
        self.session_factory = async_sessionmaker(
            self.engine, class_=AsyncSession, expire_on_commit=False
        )

    async def create_all(self) -> None:
        """Create all tables (used in lifespan and tests)."""
        # Import models so every table is registered on Base.metadata
        import agency.models  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        await self.engine.dispose()


async def get_db(request: Request) -> AsyncIterator[AsyncSession]:
    """FastAPI dependency — yields an async session from the app's database."""
    db: Database = request.app.state.db
    async with db.session_factory() as session:
        yield session
