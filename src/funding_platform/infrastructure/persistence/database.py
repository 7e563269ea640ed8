"""Database access layer using SQLAlchemy 2.0 async.

This module owns the process-wide connection pool and exposes the three
ways the rest of the platform talks to the database:

* ``query`` runs a single parameterized statement on a pooled connection.
* ``get_client`` checks out one connection for several statements.
* ``transaction`` runs a unit of work between BEGIN and COMMIT/ROLLBACK.

Statements are plain SQL strings. Sequence parameters are passed straight to
the driver as positional parameters (``$1`` for asyncpg, ``?`` for
aiosqlite); mapping parameters are bound as named ``:name`` parameters,
which works on every driver. The wrapper adds logging only: driver errors
are always re-raised unchanged.
"""

import time
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, TypeVar

from sqlalchemy import event, text
from sqlalchemy.engine import CursorResult
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

from funding_platform.core.config import Settings, get_settings
from funding_platform.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

Parameters = Sequence[Any] | Mapping[str, Any] | None


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models.

    Models only describe the schema; runtime access goes through
    ``DatabaseManager`` with plain SQL.
    """

    pass


@dataclass
class QueryResult:
    """Rows and row count returned by a statement.

    Attributes:
        rows: Result rows as dictionaries keyed by column name. Empty for
            statements that return no rows.
        row_count: Number of rows returned, or affected for DML statements.
    """

    rows: list[dict[str, Any]] = field(default_factory=list)
    row_count: int = 0

    def first(self) -> dict[str, Any] | None:
        return self.rows[0] if self.rows else None

    def scalar(self) -> Any:
        """Return the first column of the first row, or None."""
        row = self.first()
        if row is None:
            return None
        return next(iter(row.values()), None)


class TransactionState(str, Enum):
    """Lifecycle of a checked-out connection."""

    IDLE = "idle"
    BEGUN = "begun"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"
    RELEASED = "released"


async def _execute(
    connection: AsyncConnection, statement: str, parameters: Parameters
) -> QueryResult:
    if isinstance(parameters, Mapping):
        result: CursorResult = await connection.execute(text(statement), dict(parameters))
    elif parameters is not None:
        result = await connection.exec_driver_sql(statement, tuple(parameters))
    else:
        result = await connection.exec_driver_sql(statement)

    if result.returns_rows:
        rows = [dict(row._mapping) for row in result]
        return QueryResult(rows=rows, row_count=len(rows))
    return QueryResult(rows=[], row_count=result.rowcount)


def _error_message(error: BaseException) -> str:
    message = str(error)
    return message if message else "Unknown error"


class ScopedConnection:
    """A physical connection checked out of the pool.

    The caller owns the handle until ``release`` is awaited. Statements run
    outside an explicit ``begin`` are committed immediately, matching the
    behaviour of pooled ``query`` calls.
    """

    def __init__(self, connection: AsyncConnection) -> None:
        self._connection = connection
        self.state = TransactionState.IDLE

    @property
    def released(self) -> bool:
        return self.state is TransactionState.RELEASED

    @property
    def in_transaction(self) -> bool:
        return self.state is TransactionState.BEGUN

    def _ensure_usable(self) -> None:
        if self.released:
            raise RuntimeError("Connection has already been released to the pool")

    async def query(self, statement: str, parameters: Parameters = None) -> QueryResult:
        """Run a statement on this connection.

        Args:
            statement: SQL text.
            parameters: Positional sequence or named mapping.

        Returns:
            QueryResult with the rows of the statement.
        """
        self._ensure_usable()
        result = await _execute(self._connection, statement, parameters)
        if not self.in_transaction:
            await self._connection.commit()
        return result

    async def begin(self) -> None:
        self._ensure_usable()
        if self._connection.in_transaction():
            # Close any implicit transaction left by earlier autocommit reads.
            await self._connection.commit()
        await self._connection.begin()
        self.state = TransactionState.BEGUN

    async def commit(self) -> None:
        self._ensure_usable()
        await self._connection.commit()
        self.state = TransactionState.COMMITTED

    async def rollback(self) -> None:
        self._ensure_usable()
        await self._connection.rollback()
        self.state = TransactionState.ROLLED_BACK

    async def release(self) -> None:
        """Return the connection to the pool.

        Raises:
            RuntimeError: If the connection was already released.
        """
        self._ensure_usable()
        self.state = TransactionState.RELEASED
        await self._connection.close()


class DatabaseManager:
    """Connection pool and transaction manager.

    One instance is created at process start and handed to the code that
    needs it. The engine is built lazily from settings unless one is
    injected.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        engine: AsyncEngine | None = None,
    ) -> None:
        """Initialize the database manager.

        Args:
            settings: Application settings. Defaults to the cached settings.
            engine: Pre-built engine (used by tests and tooling).
        """
        self.settings = settings or get_settings()
        self._engine = engine
        if engine is not None:
            self._register_pool_events(engine)

    @property
    def engine(self) -> AsyncEngine:
        """Get or create the database engine.

        Returns:
            AsyncEngine: SQLAlchemy async engine instance.
        """
        if self._engine is None:
            self._engine = create_async_engine(
                self.settings.database_url,
                echo=self.settings.db_echo,
                **self._engine_options(),
            )
            self._register_pool_events(self._engine)
            logger.info(
                "Database engine created",
                database_url=self._engine.url.render_as_string(hide_password=True),
                pool_size=self.settings.db_pool_size,
            )
        return self._engine

    def _engine_options(self) -> dict[str, Any]:
        url = self.settings.database_url
        if url.startswith("sqlite"):
            options: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
            if ":memory:" in url:
                # One shared connection, otherwise every checkout sees an empty database.
                options["poolclass"] = StaticPool
                return options
        else:
            options = {}
            if self.settings.db_ssl:
                options["connect_args"] = {"ssl": "require"}

        options.update(
            pool_size=self.settings.db_pool_size,
            max_overflow=self.settings.db_max_overflow,
            pool_timeout=self.settings.db_pool_timeout,
            pool_recycle=self.settings.db_pool_recycle,
        )
        return options

    @staticmethod
    def _register_pool_events(engine: AsyncEngine) -> None:
        @event.listens_for(engine.sync_engine, "connect")
        def on_connect(dbapi_connection: Any, connection_record: Any) -> None:
            logger.debug("Database connection established")

        @event.listens_for(engine.sync_engine, "invalidate")
        def on_invalidate(
            dbapi_connection: Any, connection_record: Any, exception: BaseException | None
        ) -> None:
            # Soft invalidation from pool_recycle passes no exception.
            if exception is not None:
                logger.error("Unexpected database error", error=str(exception))

    def _truncate(self, statement: str) -> str:
        return statement[: self.settings.db_log_statement_length]

    async def query(self, statement: str, parameters: Parameters = None) -> QueryResult:
        """Execute one statement on a pooled connection.

        The connection is returned to the pool as soon as the statement
        completes and the statement is committed on success.

        Args:
            statement: SQL text with positional or named placeholders.
            parameters: Positional sequence or named mapping.

        Returns:
            QueryResult: Rows and row count from the driver.

        Raises:
            Exception: Whatever the driver raised, unchanged.
        """
        start = time.perf_counter()
        try:
            async with self.engine.begin() as connection:
                result = await _execute(connection, statement, parameters)
        except Exception as e:
            logger.error(
                "Database query error",
                text=self._truncate(statement),
                error=_error_message(e),
            )
            raise

        duration = round((time.perf_counter() - start) * 1000, 3)
        logger.debug(
            "Executed query",
            text=self._truncate(statement),
            duration=duration,
            rows=result.row_count,
        )
        return result

    async def get_client(self) -> ScopedConnection:
        """Check out one physical connection from the pool.

        The caller must ``await client.release()`` exactly once.

        Returns:
            ScopedConnection: The checked-out connection.
        """
        connection = await self.engine.connect()
        return ScopedConnection(connection)

    async def transaction(self, work: Callable[[ScopedConnection], Awaitable[T]]) -> T:
        """Run ``work`` inside BEGIN/COMMIT on a single connection.

        Any exception from ``work`` or from COMMIT rolls the transaction back
        and is re-raised as-is. A failing ROLLBACK is logged and does not
        mask the original exception. The connection is released exactly
        once on every path.

        Args:
            work: Coroutine function receiving the scoped connection.

        Returns:
            Whatever ``work`` returned.
        """
        client = await self.get_client()
        try:
            await client.begin()
            try:
                result = await work(client)
                await client.commit()
            except Exception as e:
                try:
                    await client.rollback()
                except Exception as rollback_error:
                    logger.error(
                        "Transaction rollback failed",
                        error=_error_message(rollback_error),
                        original_error=_error_message(e),
                    )
                raise
            return result
        finally:
            await client.release()

    async def health_check(self) -> bool:
        """Probe the database with ``SELECT 1``.

        Returns:
            bool: True if the probe succeeded, False on any failure.
        """
        try:
            await self.query("SELECT 1")
            return True
        except Exception as e:
            logger.warning("Database health check failed", error=_error_message(e))
            return False

    check_connection = health_check

    async def close_pool(self) -> None:
        """Drain and close all pooled connections."""
        if self._engine is not None:
            await self._engine.dispose()
        logger.info("Database pool closed")

    async def create_tables(self) -> None:
        """Create all tables registered on ``Base.metadata``."""
        from funding_platform.infrastructure.persistence import models  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables created")

    async def drop_tables(self) -> None:
        """Drop all tables. Only use in testing!"""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
        logger.warning("Database tables dropped")


async def init_database(db: DatabaseManager, settings: Settings | None = None) -> None:
    """Prepare the database at application startup.

    Creates the SQLite data directory, verifies connectivity and, outside
    production, creates the schema. Production deployments manage the
    schema with migrations.

    Raises:
        RuntimeError: If the database cannot be reached.
    """
    settings = settings or db.settings

    if settings.database_url.startswith("sqlite") and ":memory:" not in settings.database_url:
        db_path = settings.database_url.split(":///")[-1]
        db_dir = Path(db_path).parent
        db_dir.mkdir(parents=True, exist_ok=True)
        logger.info("Database directory created", path=str(db_dir))

    if not await db.health_check():
        logger.error("Database connection failed")
        raise RuntimeError("Failed to connect to database")

    if settings.is_production:
        logger.info("Production mode: Skipping auto-create, use migrations")
    else:
        await db.create_tables()
