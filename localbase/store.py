"""Record store: parameterized execution against the embedded DuckDB file.

Every other component reaches the datastore exclusively through
``RecordStore``. Statements always arrive as SQL text plus a parameter
list; values are never concatenated into the text.

Statements run inside a worker thread (``asyncio.to_thread``), so the
event loop never blocks on the datastore. One DuckDB connection per store
is opened lazily and guarded by a mutex: statements from concurrent
callers run one at a time, each in its own implicit transaction. There are
no multi-statement transactions.
"""

import asyncio
import re
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Generator, Iterable

import duckdb
import structlog

from localbase import metrics
from localbase.errors import StoreError
from localbase.schema import CORE_SCHEMAS, TableSchema, decode_generic

logger = structlog.get_logger()

_ROW_STATEMENT_RE = re.compile(r"^\s*(SELECT|WITH|PRAGMA|DESCRIBE|SHOW|FROM)\b", re.IGNORECASE)
_RETURNING_RE = re.compile(r"\bRETURNING\b", re.IGNORECASE)


def returns_rows(sql: str) -> bool:
    """True for statements that produce a result set rather than a count."""
    return bool(_ROW_STATEMENT_RE.match(sql) or _RETURNING_RE.search(sql))


class RecordStore:
    """
    Thin wrapper around one DuckDB database file.

    Usage:
        store = RecordStore(Path("data/localbase.duckdb"))
        await store.initialize()
        rows = await store.get_all("SELECT * FROM users WHERE role = ?", ["USER"])
    """

    def __init__(
        self,
        database_path: Path | str,
        schemas: Iterable[TableSchema] = CORE_SCHEMAS,
    ) -> None:
        self.database_path = Path(database_path)
        self._conn: duckdb.DuckDBPyConnection | None = None
        self._lock = threading.Lock()
        self._schemas: dict[str, TableSchema] = {}
        for schema in schemas:
            self.register(schema)

    # ========================================
    # Schema registry
    # ========================================

    def register(self, schema: TableSchema) -> None:
        """Register (or replace) a table declaration."""
        self._schemas[schema.name] = schema

    def schema(self, table: str) -> TableSchema | None:
        return self._schemas.get(table)

    @property
    def schemas(self) -> list[TableSchema]:
        return list(self._schemas.values())

    async def initialize(self) -> None:
        """Create the database file and every registered table. Idempotent."""
        self.database_path.parent.mkdir(parents=True, exist_ok=True)
        for schema in self._schemas.values():
            await self.execute(schema.ddl())
        logger.info(
            "record_store_initialized",
            path=str(self.database_path),
            tables=sorted(self._schemas),
        )

    # ========================================
    # Row encoding
    # ========================================

    def encode_row(self, table: str, row: dict[str, Any], for_insert: bool = False) -> dict[str, Any]:
        """Validate and encode a row for a registered table; pass others through."""
        schema = self._schemas.get(table)
        if schema is None:
            return dict(row)
        return schema.encode_row(row, for_insert=for_insert)

    def encode_value(self, table: str, column: str, value: Any) -> Any:
        """Encode a single filter value using the column declaration, if any."""
        schema = self._schemas.get(table)
        if schema is None or not schema.has_column(column):
            return value
        return schema.column(column).encode(value)

    def decode_row(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        schema = self._schemas.get(table)
        if schema is None:
            return {name: decode_generic(value) for name, value in row.items()}
        return schema.decode_row(row)

    # ========================================
    # Execution
    # ========================================

    @contextmanager
    def connection(self) -> Generator[duckdb.DuckDBPyConnection, None, None]:
        """
        Exclusive access to the store's connection, opened on first use.

        Usage:
            with store.connection() as conn:
                conn.execute("SELECT 1")
        """
        wait_start = time.perf_counter()
        with self._lock:
            metrics.STORE_LOCK_WAIT_TIME.observe(time.perf_counter() - wait_start)
            if self._conn is None:
                self.database_path.parent.mkdir(parents=True, exist_ok=True)
                self._conn = duckdb.connect(str(self.database_path))
                logger.debug("record_store_connected", path=str(self.database_path))
            yield self._conn

    def close(self) -> None:
        """Close the connection; the next statement reopens it."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
                logger.debug("record_store_closed", path=str(self.database_path))

    def _execute_sync(self, sql: str, params: list[Any]) -> list[dict[str, Any]] | int:
        operation = "read" if _ROW_STATEMENT_RE.match(sql) else "write"
        start_time = time.time()
        try:
            with self.connection() as conn:
                cursor = conn.execute(sql, params) if params else conn.execute(sql)
                if returns_rows(sql):
                    columns = [desc[0] for desc in cursor.description or []]
                    result: list[dict[str, Any]] | int = [
                        dict(zip(columns, row)) for row in cursor.fetchall()
                    ]
                else:
                    row = cursor.fetchone() if cursor.description else None
                    result = int(row[0]) if row and isinstance(row[0], int) else 0
                conn.commit()
                return result
        except duckdb.Error as e:
            metrics.STORE_ERRORS_TOTAL.labels(operation=operation).inc()
            logger.debug("record_store_statement_failed", sql=sql, error=str(e))
            raise StoreError(str(e), cause=e, details={"sql": sql}) from e
        finally:
            duration = time.time() - start_time
            metrics.STORE_QUERIES_TOTAL.labels(operation=operation).inc()
            metrics.STORE_QUERY_DURATION.labels(operation=operation).observe(duration)

    async def execute(
        self, sql: str, params: list[Any] | tuple[Any, ...] | None = None
    ) -> list[dict[str, Any]] | int:
        """
        Execute one parameterized statement.

        Returns:
            List of row dicts for statements producing rows (SELECT, ... RETURNING),
            otherwise the affected row count.

        Raises:
            StoreError: Any datastore failure, with the DuckDB exception as cause
        """
        return await asyncio.to_thread(self._execute_sync, sql, list(params or []))

    async def get_all(
        self, sql: str, params: list[Any] | tuple[Any, ...] | None = None
    ) -> list[dict[str, Any]]:
        """Execute a row-producing statement and return all rows."""
        result = await self.execute(sql, params)
        if isinstance(result, int):
            raise StoreError("Statement did not produce rows", details={"sql": sql})
        return result

    async def get_one(
        self, sql: str, params: list[Any] | tuple[Any, ...] | None = None
    ) -> dict[str, Any] | None:
        """Execute a row-producing statement and return the first row, or None."""
        rows = await self.get_all(sql, params)
        return rows[0] if rows else None
