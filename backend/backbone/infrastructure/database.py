"""Database Session Manager — async SQLAlchemy engine acting as the request/response data endpoint.

Invariants:
    - Every session auto-rolls-back on exception (no partial commits leak)
    - Connection pool uses pool_pre_ping for stale connection detection
    - All SQLAlchemy exceptions mapped to ServiceError carrying the driver's SQLSTATE when known
    - probe() raises on failure: the connection monitor turns that into a status transition

Design Decisions:
    - operation(fn) builds zero-argument operations: the query executor can re-run them
      on retry, each attempt in a fresh session
    - IntegrityError without a driver SQLSTATE (e.g. SQLite) reported as 23000 so it still
      classifies as a validation failure
    - Pool options only applied to server databases; SQLite uses its own pool class
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Awaitable, Callable, TypeVar

from sqlalchemy.ext.asyncio import (
    AsyncSession, create_async_engine, async_sessionmaker,
)
from sqlalchemy.exc import (
    IntegrityError, OperationalError, DBAPIError, SQLAlchemyError,
)
from sqlalchemy import text

from backbone.core.errors import ServiceError

logger = logging.getLogger(__name__)

T = TypeVar("T")

INTEGRITY_VIOLATION = "23000"


def _driver_code(e: SQLAlchemyError) -> str | None:
    orig = getattr(e, "orig", None)
    for attr in ("sqlstate", "pgcode"):
        code = getattr(orig, attr, None)
        if isinstance(code, str) and code:
            return code
    return None


def to_service_error(e: SQLAlchemyError) -> ServiceError:
    """Translate a SQLAlchemy failure into the collaborator error shape."""
    code = _driver_code(e)
    detail = str(getattr(e, "orig", None) or e)
    if isinstance(e, IntegrityError):
        return ServiceError(f"Integrity constraint violated: {detail}", code or INTEGRITY_VIOLATION)
    if isinstance(e, OperationalError):
        return ServiceError(f"Connection or operational error: {detail}", code)
    if isinstance(e, DBAPIError):
        if e.connection_invalidated:
            return ServiceError(f"Connection invalidated: {detail}", code or "08003")
        return ServiceError(f"Database driver error: {detail}", code)
    return ServiceError(f"Database operation failed: {detail}", code)


class DatabaseSessionManager:
    """Manages async database sessions with pooling, rollback, and health probes."""

    def __init__(
        self, database_url: str, pool_size: int = 20, max_overflow: int = 10,
    ):
        engine_kwargs: dict[str, Any] = {"pool_pre_ping": True}
        if not database_url.startswith("sqlite"):
            engine_kwargs.update(
                pool_size=pool_size, max_overflow=max_overflow, pool_recycle=3600,
            )
        self.engine = create_async_engine(database_url, **engine_kwargs)
        self._session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Provide session with auto-rollback on exception."""
        session = self._session_factory()
        try:
            yield session
        except SQLAlchemyError as e:
            await session.rollback()
            logger.error(f"Database error: {e}")
            raise to_service_error(e) from e
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    async def probe(self) -> None:
        """Minimal reachability read used by the connection monitor."""
        async with self.session() as db:
            await db.execute(text("SELECT 1"))

    def operation(
        self, fn: Callable[[AsyncSession], Awaitable[T]], *, commit: bool = False,
    ) -> Callable[[], Awaitable[T]]:
        """Bind fn to a fresh session per call, for use with the query executor."""
        async def _run() -> T:
            async with self.session() as db:
                result = await fn(db)
                if commit:
                    await db.commit()
                return result

        return _run

    async def dispose(self) -> None:
        await self.engine.dispose()
