import pytest
import pytest_asyncio
from sqlalchemy.exc import IntegrityError, OperationalError
from structlog.testing import capture_logs

from funding_platform.infrastructure.persistence.database import (
    DatabaseManager,
    TransactionState,
    init_database,
)


@pytest_asyncio.fixture
async def items_db(db: DatabaseManager) -> DatabaseManager:
    await db.query("CREATE TABLE items (id INTEGER PRIMARY KEY, name TEXT NOT NULL)")
    return db


async def count_items(db: DatabaseManager) -> int:
    result = await db.query("SELECT COUNT(*) AS total FROM items")
    return result.scalar()


@pytest.mark.asyncio
async def test_database_connection(db):
    """Test that the database manager can connect to the database."""
    assert await db.check_connection() is True


@pytest.mark.asyncio
async def test_positional_parameters(items_db):
    inserted = await items_db.query("INSERT INTO items (id, name) VALUES (?, ?)", [1, "proposal"])
    assert inserted.row_count == 1

    result = await items_db.query("SELECT id, name FROM items WHERE id = ?", (1,))

    assert result.rows == [{"id": 1, "name": "proposal"}]
    assert result.row_count == 1


@pytest.mark.asyncio
async def test_named_parameters(items_db):
    await items_db.query("INSERT INTO items (id, name) VALUES (:id, :name)", {"id": 1, "name": "a"})
    await items_db.query("INSERT INTO items (id, name) VALUES (:id, :name)", {"id": 2, "name": "b"})

    updated = await items_db.query("UPDATE items SET name = :name", {"name": "c"})

    assert updated.row_count == 2
    result = await items_db.query("SELECT name FROM items ORDER BY id")
    assert [row["name"] for row in result.rows] == ["c", "c"]


@pytest.mark.asyncio
async def test_query_error_is_logged_and_reraised(items_db):
    with capture_logs() as logs, pytest.raises(OperationalError):
        await items_db.query("SELECT * FROM missing_table")

    error = next(log for log in logs if log["event"] == "Database query error")
    assert error["text"] == "SELECT * FROM missing_table"
    assert "missing_table" in error["error"]


@pytest.mark.asyncio
async def test_query_logs_truncated_statement(items_db):
    statement = "SELECT id FROM items WHERE name = :name" + " " * 200

    with capture_logs() as logs:
        await items_db.query(statement, {"name": "x"})

    executed = next(log for log in logs if log["event"] == "Executed query")
    assert len(executed["text"]) == 100
    assert executed["rows"] == 0
    assert executed["duration"] >= 0


@pytest.mark.asyncio
async def test_transaction_commit_persists(items_db):
    async def work(client):
        await client.query("INSERT INTO items (id, name) VALUES (:id, :name)", {"id": 1, "name": "a"})
        await client.query("INSERT INTO items (id, name) VALUES (:id, :name)", {"id": 2, "name": "b"})
        return "ok"

    assert await items_db.transaction(work) == "ok"
    assert await count_items(items_db) == 2


@pytest.mark.asyncio
async def test_transaction_rollback_discards(items_db):
    async def work(client):
        await client.query("INSERT INTO items (id, name) VALUES (:id, :name)", {"id": 1, "name": "a"})
        # Duplicate primary key.
        await client.query("INSERT INTO items (id, name) VALUES (:id, :name)", {"id": 1, "name": "b"})

    with pytest.raises(IntegrityError):
        await items_db.transaction(work)

    assert await count_items(items_db) == 0


@pytest.mark.asyncio
async def test_transaction_application_error_rolls_back(items_db):
    async def work(client):
        await client.query("INSERT INTO items (id, name) VALUES (1, 'a')")
        raise ValueError("assessment incomplete")

    with pytest.raises(ValueError, match="assessment incomplete"):
        await items_db.transaction(work)

    assert await count_items(items_db) == 0


@pytest.mark.asyncio
async def test_scoped_client(items_db):
    client = await items_db.get_client()
    try:
        await client.begin()
        await client.query("INSERT INTO items (id, name) VALUES (?, ?)", (1, "a"))
        await client.commit()
        assert client.state is TransactionState.COMMITTED
    finally:
        await client.release()

    assert client.released is True
    assert await count_items(items_db) == 1


@pytest.mark.asyncio
async def test_create_and_drop_tables(db):
    tables = await db.query("SELECT name FROM sqlite_master WHERE type = 'table' ORDER BY name")
    names = {row["name"] for row in tables.rows}
    assert {"user_sessions", "token_families", "revoked_sessions", "revoked_tokens"} <= names

    await db.drop_tables()

    tables = await db.query("SELECT name FROM sqlite_master WHERE type = 'table'")
    assert tables.rows == []


@pytest.mark.asyncio
async def test_init_database_creates_directory_and_schema(tmp_path, settings_factory):
    db_file = tmp_path / "nested" / "funding.db"
    settings = settings_factory(database_url=f"sqlite+aiosqlite:///{db_file}")
    manager = DatabaseManager(settings)
    try:
        await init_database(manager, settings)

        assert db_file.parent.is_dir()
        result = await manager.query("SELECT COUNT(*) FROM user_sessions")
        assert result.scalar() == 0
    finally:
        await manager.close_pool()


@pytest.mark.asyncio
async def test_init_database_fails_when_unreachable(settings_factory):
    settings = settings_factory(database_url="postgresql+asyncpg://user:pw@127.0.0.1:1/none")
    manager = DatabaseManager(settings)
    try:
        with pytest.raises(RuntimeError, match="Failed to connect to database"):
            await init_database(manager, settings)
    finally:
        await manager.close_pool()


@pytest.mark.asyncio
async def test_broken_pooled_connection_is_logged(tmp_path, settings_factory):
    settings = settings_factory(database_url=f"sqlite+aiosqlite:///{tmp_path / 'pool.db'}")
    manager = DatabaseManager(settings)
    try:
        with capture_logs() as logs:
            async with manager.engine.connect() as conn:
                await conn.invalidate(OperationalError("SELECT 1", {}, Exception("server closed")))

        error = next(log for log in logs if log["event"] == "Unexpected database error")
        assert error["log_level"] == "error"
        assert "server closed" in error["error"]
        assert await manager.health_check() is True
    finally:
        await manager.close_pool()
