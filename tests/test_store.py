"""Tests for the record store."""

import pytest

from localbase.errors import StoreError
from localbase.schema import CORE_SCHEMAS
from localbase.store import RecordStore, returns_rows


class TestReturnsRows:
    """Tests for statement classification."""

    @pytest.mark.parametrize("sql", [
        "SELECT 1",
        "  select * from users",
        "WITH x AS (SELECT 1) SELECT * FROM x",
        "INSERT INTO t (a) VALUES (?) RETURNING *",
        "DELETE FROM t WHERE a = ? RETURNING *",
    ])
    def test_row_statements(self, sql):
        assert returns_rows(sql)

    @pytest.mark.parametrize("sql", [
        "INSERT INTO t (a) VALUES (?)",
        "UPDATE t SET a = ?",
        "CREATE TABLE t (a INTEGER)",
    ])
    def test_count_statements(self, sql):
        assert not returns_rows(sql)


class TestRecordStore:
    """Tests for parameterized execution."""

    async def test_initialize_creates_core_tables(self, store):
        rows = await store.get_all(
            "SELECT table_name FROM information_schema.tables ORDER BY table_name"
        )
        names = {row["table_name"] for row in rows}
        assert {schema.name for schema in CORE_SCHEMAS} <= names

    async def test_initialize_is_idempotent(self, store):
        await store.initialize()
        await store.initialize()
        assert store.database_path.exists()

    async def test_write_returns_count(self, store):
        count = await store.execute(
            "INSERT INTO users (id, email) VALUES (?, ?)", ["u1", "a@x.com"]
        )
        assert count == 1

    async def test_select_returns_dicts(self, store):
        await store.execute("INSERT INTO users (id, email) VALUES (?, ?)", ["u1", "a@x.com"])
        row = await store.get_one("SELECT id, email, role FROM users WHERE id = ?", ["u1"])
        assert row == {"id": "u1", "email": "a@x.com", "role": "USER"}

    async def test_get_one_missing(self, store):
        assert await store.get_one("SELECT * FROM users WHERE id = ?", ["nope"]) is None

    async def test_values_are_bound_not_interpolated(self, store):
        hostile = "x'); DROP TABLE users; --"
        await store.execute("INSERT INTO users (id, email) VALUES (?, ?)", ["u1", hostile])
        row = await store.get_one("SELECT email FROM users WHERE email = ?", [hostile])
        assert row["email"] == hostile
        assert await store.get_all("SELECT * FROM users")

    async def test_unique_violation_detected(self, store):
        await store.execute("INSERT INTO users (id, email) VALUES (?, ?)", ["u1", "a@x.com"])
        with pytest.raises(StoreError) as exc:
            await store.execute("INSERT INTO users (id, email) VALUES (?, ?)", ["u2", "a@x.com"])
        assert exc.value.is_unique_violation
        assert exc.value.details["sql"].startswith("INSERT INTO users")

    async def test_syntax_error_wrapped(self, store):
        with pytest.raises(StoreError) as exc:
            await store.execute("SELEC nothing")
        assert exc.value.cause is not None
        assert not exc.value.is_unique_violation

    async def test_get_all_rejects_count_statements(self, store):
        with pytest.raises(StoreError):
            await store.get_all("UPDATE users SET role = ?", ["ADMIN"])

    async def test_decode_row_for_unregistered_table(self, tmp_path):
        store = RecordStore(tmp_path / "plain.duckdb", schemas=())
        await store.execute("CREATE TABLE t (a TIMESTAMP)")
        await store.execute("INSERT INTO t VALUES ('2024-01-01 10:00:00')")
        row = await store.get_one("SELECT * FROM t")
        assert store.decode_row("t", row) == {"a": "2024-01-01T10:00:00+00:00"}
