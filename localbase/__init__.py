"""localbase - local emulation of a backend-as-a-service client.

Auth, a chainable table query builder and bucket/object storage, backed by
an embedded DuckDB file and the local filesystem.
"""

from localbase.auth import AuthEmulator
from localbase.client import LocalClient, create_client
from localbase.config import Settings
from localbase.errors import (
    AuthError,
    ConflictError,
    FilesystemError,
    LocalbaseError,
    NotFoundError,
    StoreError,
    ValidationError,
)
from localbase.results import ErrorInfo, Result
from localbase.schema import Column, TableSchema
from localbase.storage import StorageEmulator
from localbase.store import RecordStore

__version__ = "0.1.0"

__all__ = [
    "AuthEmulator",
    "AuthError",
    "Column",
    "ConflictError",
    "ErrorInfo",
    "FilesystemError",
    "LocalClient",
    "LocalbaseError",
    "NotFoundError",
    "RecordStore",
    "Result",
    "Settings",
    "StorageEmulator",
    "StoreError",
    "TableSchema",
    "ValidationError",
    "create_client",
]
