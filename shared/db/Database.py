"""Async SQLAlchemy engine and session owner."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from shared.db.models import Base
from shared.helper.HelperConfig import HelperConfig


class Database:
    """Owns one engine and session factory. Passed explicitly to every component that needs it."""

    def __init__(self, helper_config: HelperConfig, url: str | None = None):
        self.logging = helper_config.get_logger()
        self._url = self._normalize_url(url or helper_config.get_string_val("DATABASE_URL"))
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    @staticmethod
    def _normalize_url(url: str) -> str:
        # plain postgres URLs get the asyncpg driver
        if url.startswith("postgresql://"):
            return url.replace("postgresql://", "postgresql+asyncpg://", 1)
        if url.startswith("postgres://"):
            return url.replace("postgres://", "postgresql+asyncpg://", 1)
        return url

    @property
    def is_sqlite(self) -> bool:
        return self._url.startswith("sqlite")

    async def boot(self) -> None:
        kwargs: dict = {}
        # SQLite doesn't support pool_size / max_overflow
        if not self.is_sqlite:
            kwargs["pool_size"] = 10
            kwargs["max_overflow"] = 5
            kwargs["pool_pre_ping"] = True
        self._engine = create_async_engine(self._url, **kwargs)
        self._session_factory = async_sessionmaker(bind=self._engine, class_=AsyncSession, expire_on_commit=False)
        self.logging.info("Database engine created (%s).", "sqlite" if self.is_sqlite else "postgresql")

    async def create_schema(self) -> None:
        """Create all tables that do not exist yet."""
        async with self._get_engine().begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        self.logging.info("Database tables created/verified.")

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None
            self.logging.info("Database engine disposed.")

    def _get_engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("Database not initialised. Call boot() first.")
        return self._engine

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Yield a session that commits on success and rolls back on error."""
        if self._session_factory is None:
            raise RuntimeError("Database not initialised. Call boot() first.")
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
