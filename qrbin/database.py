"""
Database configuration and session management.
Uses async SQLAlchemy for non-blocking database operations.

로깅 최적화:
- SQL echo 비활성화 (운영 노이즈 방지)
- 느린 쿼리 로깅 (1초 이상)

파일 정리 순서:
- DB가 유일한 정답. 파일 삭제는 커밋 이후에만 실행 (run_after_commit)
- 롤백되면 대기 중인 파일 정리는 버려짐
"""
import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Callable

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, Session
from sqlalchemy.pool import NullPool, QueuePool

from qrbin.config import DEFAULT_DATABASE_URL, get_settings
from qrbin.utils.prometheus_metrics import db_errors_total

_logger = logging.getLogger("qrbin.db")

settings = get_settings()

# 느린 쿼리 임계값 (초)
SLOW_QUERY_THRESHOLD = 1.0

# session.info key for cleanup callbacks waiting on the outermost commit
_AFTER_COMMIT_KEY = "qrbin_after_commit"

_database_url = (settings.database_url or "").strip() or DEFAULT_DATABASE_URL


def configure_sqlite_engine(sync_engine: Engine) -> None:
    """
    Make SQLite behave like the production database for our purposes.

    - foreign keys enforced (photo rows cascade with their bin)
    - transactions started explicitly so SAVEPOINT works
      (short code retry, import rollback)
    """

    @event.listens_for(sync_engine, "connect")
    def _on_connect(dbapi_conn, connection_record):
        # pysqlite/aiosqlite 자체 트랜잭션 관리 비활성화, BEGIN은 아래에서 직접 발행
        dbapi_conn.isolation_level = None
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def install_slow_query_logging(sync_engine: Engine) -> None:
    """Log statements slower than SLOW_QUERY_THRESHOLD."""

    @event.listens_for(sync_engine, "before_cursor_execute")
    def _before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
        conn.info.setdefault("query_start_time", []).append(time.perf_counter())

    @event.listens_for(sync_engine, "after_cursor_execute")
    def _after_cursor_execute(conn, cursor, statement, parameters, context, executemany):
        start_times = conn.info.get("query_start_time")
        if start_times:
            elapsed = time.perf_counter() - start_times.pop()
            if elapsed >= SLOW_QUERY_THRESHOLD:
                # 쿼리 앞 100자만 로깅 (보안/가독성)
                short_stmt = statement[:100] + "..." if len(statement) > 100 else statement
                _logger.warning(
                    "Slow query",
                    extra={"event": "db", "ms": round(elapsed * 1000), "query": short_stmt},
                )


def create_engine_for_url(url: str) -> AsyncEngine:
    """Create an async engine with the hooks every qrbin engine needs."""
    if "sqlite" in url:
        new_engine = create_async_engine(url, echo=False, poolclass=NullPool)
        configure_sqlite_engine(new_engine.sync_engine)
    else:
        new_engine = create_async_engine(
            url,
            echo=False,  # SQL 로그 비활성화
            poolclass=QueuePool,
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_timeout=settings.db_pool_timeout,
            pool_recycle=settings.db_pool_recycle,
            pool_pre_ping=True,
        )
    install_slow_query_logging(new_engine.sync_engine)
    return new_engine


engine = create_engine_for_url(_database_url)

# Create async session factory
async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


# ============== Post-commit cleanup ==============


def run_after_commit(session: AsyncSession, callback: Callable[[], None]) -> None:
    """
    Queue a callback to run once the session's outermost transaction commits.

    Used for filesystem cleanup that must never run ahead of the row delete.
    Callbacks must not raise. If the transaction rolls back they are dropped.
    """
    session.info.setdefault(_AFTER_COMMIT_KEY, []).append(callback)


def pending_after_commit(session: AsyncSession) -> int:
    """Number of queued callbacks; a marker for discard_after_commit."""
    return len(session.info.get(_AFTER_COMMIT_KEY, []))


def discard_after_commit(session: AsyncSession, marker: int) -> None:
    """Drop callbacks queued after `marker` (work rolled back to a savepoint)."""
    pending = session.info.get(_AFTER_COMMIT_KEY)
    if pending:
        del pending[marker:]


@event.listens_for(Session, "after_commit")
def _run_after_commit(session: Session) -> None:
    # SAVEPOINT release도 after_commit을 발생시키므로 최상위 커밋에서만 실행
    if session.get_nested_transaction() is not None:
        return
    callbacks = session.info.pop(_AFTER_COMMIT_KEY, [])
    for callback in callbacks:
        try:
            callback()
        except Exception as e:
            _logger.error(
                "Post-commit cleanup failed",
                extra={"event": "db", "error_type": type(e).__name__, "error": str(e)[:200]},
            )


@event.listens_for(Session, "after_transaction_end")
def _drop_after_commit(session: Session, transaction) -> None:
    # 최상위 트랜잭션 종료 시 남은 콜백 = 롤백/close 된 작업 → 폐기
    if transaction.parent is None:
        session.info.pop(_AFTER_COMMIT_KEY, None)


# ============== Lifecycle ==============


async def init_db() -> None:
    """Initialize database by creating all tables."""
    import qrbin.models  # noqa: F401  (register mappers)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Close database connections properly."""
    await engine.dispose()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency that provides a database session.
    One request = one transaction: committed on success, rolled back on error.

    Usage:
        @app.get("/items")
        async def get_items(db: AsyncSession = Depends(get_db)):
            ...
    """
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception as e:
            # HTTPException 등 요청 오류도 롤백하지만, 집계/로깅은 DB 오류만
            if isinstance(e, SQLAlchemyError):
                db_errors_total.inc()
                _logger.error(
                    "DB error",
                    extra={
                        "event": "db",
                        "error_type": type(e).__name__,
                        "error": str(e)[:200],  # 에러 메시지 앞 200자
                    },
                )
            await session.rollback()
            raise
        finally:
            await session.close()


@asynccontextmanager
async def get_db_context(
    session_factory: async_sessionmaker = None,
) -> AsyncGenerator[AsyncSession, None]:
    """
    Context manager for database sessions outside of request context.
    Useful for background tasks (trash purge) or CLI commands.

    Usage:
        async with get_db_context() as session:
            result = await session.execute(query)
    """
    factory = session_factory or async_session_maker
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception as e:
            _logger.error(
                "DB context error",
                extra={
                    "event": "db",
                    "error_type": type(e).__name__,
                    "error": str(e)[:200],
                },
            )
            await session.rollback()
            raise
        finally:
            await session.close()
