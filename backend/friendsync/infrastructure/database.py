"""Store sessions: one short-lived AsyncSession per store call.

Invariants:
    - A session that raises is rolled back and closed before the error leaves
    - Any SQLAlchemy error that escapes a store call surfaces as
      TransientStoreFailureError, tagged with the store operation that failed
    - Pooled connections are pinged before reuse (pool_pre_ping)

Design Decisions:
    - Stores that expect an IntegrityError (an INSERT losing a compare-and-swap
      race) catch it inside their own session block; only unexpected ones are
      mapped here
    - expire_on_commit=False: records are converted to domain types after the
      commit, outside any lazy-load
    - db_manager is set by the app lifespan; tests swap in their own manager
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.exc import (
    DBAPIError, IntegrityError, OperationalError, SQLAlchemyError,
)
from sqlalchemy.ext.asyncio import (
    AsyncSession, async_sessionmaker, create_async_engine,
)

from friendsync.core.errors import TransientStoreFailureError

logger = logging.getLogger(__name__)

# Most specific first: IntegrityError and OperationalError are DBAPIErrors
_STORE_FAILURES: tuple[tuple[type[SQLAlchemyError], str, str], ...] = (
    (IntegrityError, "commit", "unexpected constraint violation"),
    (OperationalError, "execute", "connection lost or statement refused"),
    (DBAPIError, "query", "driver rejected the statement"),
    (SQLAlchemyError, "unknown", "relationship store error"),
)


class DatabaseSessionManager:
    """Engine plus session factory for the relationship and presence stores."""

    def __init__(
        self, database_url: str, pool_size: int = 20, max_overflow: int = 10,
    ):
        self.engine = create_async_engine(
            database_url,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=True,
            pool_recycle=3600,
        )
        self._session_factory = async_sessionmaker(
            self.engine, class_=AsyncSession, expire_on_commit=False,
        )

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        session = self._session_factory()
        try:
            yield session
        except SQLAlchemyError as e:
            await session.rollback()
            operation, message = _classify(e)
            logger.error(
                f"Store {operation} failed: {e}",
                extra={"store_operation": operation},
            )
            raise TransientStoreFailureError(message, operation) from e
        finally:
            await session.close()

    async def health_check(self) -> bool:
        """True when a trivial query round-trips; used by /health/ready."""
        try:
            async with self.session() as db:
                await db.execute(text("SELECT 1"))
        except (TransientStoreFailureError, OSError) as e:
            logger.warning(f"Store health check failed: {e}")
            return False
        return True

    async def dispose(self) -> None:
        await self.engine.dispose()


def _classify(error: SQLAlchemyError) -> tuple[str, str]:
    for kind, operation, message in _STORE_FAILURES:
        if isinstance(error, kind):
            return operation, message
    return "unknown", "relationship store error"


db_manager: DatabaseSessionManager | None = None


def init_db(database_url: str, **kwargs) -> DatabaseSessionManager:
    global db_manager
    db_manager = DatabaseSessionManager(database_url, **kwargs)
    return db_manager


def get_db_manager() -> DatabaseSessionManager:
    """FastAPI dependency: the manager set up by the app lifespan."""
    if not db_manager:
        raise RuntimeError("Database not initialized")
    return db_manager
