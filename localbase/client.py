"""Client facade mirroring the hosted BaaS client surface.

    client = await create_client()
    result = await client.table("courses").select("id, title").eq("published", True).limit(10)
    if result.error:
        ...
    await client.auth.sign_in("a@x.com", "secret")
    await client.storage.from_("documents").upload("u1/notes.txt", b"hello")
"""

from typing import Any

import structlog

from localbase.auth import AuthEmulator
from localbase.config import Settings, settings as default_settings
from localbase.query import DeleteQuery, InsertQuery, SelectQuery, UpdateQuery
from localbase.schema import TableSchema
from localbase.storage import StorageEmulator
from localbase.store import RecordStore

logger = structlog.get_logger()


class LocalClient:
    """
    Local stand-in for the hosted client: tables, auth and storage.

    Query builders are immutable and awaitable; every awaited builder and
    every auth/storage call returns a ``Result``.
    """

    def __init__(self, settings: Settings | None = None, store: RecordStore | None = None) -> None:
        self.settings = settings or default_settings
        self.store = store or RecordStore(self.settings.database_path)
        self.auth = AuthEmulator(
            self.store,
            session_ttl_days=self.settings.session_ttl_days,
            default_account_status=self.settings.default_account_status,
            verify_passwords=self.settings.verify_passwords,
        )
        self.storage = StorageEmulator(
            self.store,
            self.settings.storage_dir,
            buckets=self.settings.buckets,
            public_url_prefix=self.settings.public_url_prefix,
        )

    async def initialize(self) -> None:
        """Create tables and the configured buckets. Safe on every start."""
        await self.store.initialize()
        result = await self.storage.initialize_buckets()
        if result.error:
            logger.error("bucket_initialization_failed", error=result.error.message)
        logger.info(
            "localbase_client_ready",
            database=str(self.store.database_path),
            storage=str(self.storage.root),
        )

    def close(self) -> None:
        self.store.close()

    def register_table(self, schema: TableSchema) -> None:
        """Declare an application table; created on the next initialize()."""
        self.store.register(schema)

    # ========================================
    # Query entry points
    # ========================================

    def table(self, name: str) -> SelectQuery:
        return SelectQuery(self.store, name)

    # Hosted-client spelling
    from_ = table

    def insert(self, table: str, rows: dict[str, Any] | list[dict[str, Any]] | None = None) -> InsertQuery:
        query = InsertQuery(self.store, table)
        return query.values(rows) if rows is not None else query

    def upsert(
        self,
        table: str,
        rows: dict[str, Any] | list[dict[str, Any]] | None = None,
        on_conflict: str | list[str] = "id",
    ) -> InsertQuery:
        query = InsertQuery(self.store, table, upsert=True)
        if rows is None:
            return query.values((), on_conflict=on_conflict)
        return query.values(rows, on_conflict=on_conflict)

    def update(self, table: str, data: dict[str, Any] | None = None) -> UpdateQuery:
        query = UpdateQuery(self.store, table, require_filters=self.settings.require_mutation_filters)
        return query.set(data) if data is not None else query

    def delete(self, table: str) -> DeleteQuery:
        return DeleteQuery(self.store, table, require_filters=self.settings.require_mutation_filters)


async def create_client(settings: Settings | None = None) -> LocalClient:
    """Build and initialize a client."""
    client = LocalClient(settings)
    await client.initialize()
    return client
