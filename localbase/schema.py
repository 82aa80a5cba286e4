"""Typed table declarations.

Each logical table is declared once as a ``TableSchema``. The record store
uses the declaration to:

- create the table (``TableSchema.ddl``)
- validate rows at the store boundary (unknown columns, non JSON-compatible values)
- encode values on the way in (JSON columns serialised, timestamps normalised to UTC)
- decode values on the way out (JSON parsed, timestamps as ISO-8601 strings)

Foreign keys are declared with ``references="table.column"``. They are
metadata only: DuckDB does not cascade, and emitting the constraint would
block updates on referenced rows, so the query builder uses them purely to
resolve nested selects.
"""

import json
import re
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any
from uuid import UUID

from localbase.errors import ValidationError

IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

SCALAR_TYPES = (bool, int, float, str, bytes, datetime, date)


def validate_identifier(name: Any, kind: str = "identifier") -> str:
    """Return name if it is a safe SQL identifier, else raise ValidationError."""
    if not isinstance(name, str) or not IDENTIFIER_RE.match(name):
        raise ValidationError(
            f"Invalid {kind}: {name!r}",
            details={kind: repr(name)},
        )
    return name


def quote_identifier(name: str) -> str:
    """Double-quote an identifier that already passed validate_identifier."""
    return f'"{name}"'


def utc_now() -> datetime:
    """Naive UTC timestamp, the representation stored in TIMESTAMP columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _parse_timestamp(value: str, column: str) -> datetime:
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError as e:
        raise ValidationError(
            f"Invalid timestamp for column '{column}': {value!r}",
            details={"column": column, "value": value},
            cause=e,
        )


def _to_utc_naive(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def decode_generic(value: Any) -> Any:
    """Convert datastore values into JSON-compatible Python values."""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, UUID):
        return str(value)
    return value


@dataclass(frozen=True)
class Column:
    """
    One column of a table declaration.

    Attributes:
        name: Column name (must be a plain identifier)
        type: DuckDB type (VARCHAR, BOOLEAN, INTEGER, BIGINT, DOUBLE, TIMESTAMP, JSON, ...)
        nullable: False emits NOT NULL
        unique: True emits UNIQUE
        default: SQL default expression, taken verbatim (declared in code, never user input)
        references: "table.column" this column points at (metadata only)
        auto_now: Fill with the current UTC time on insert when absent
    """

    name: str
    type: str = "VARCHAR"
    nullable: bool = True
    unique: bool = False
    default: str | None = None
    references: str | None = None
    auto_now: bool = False

    def __post_init__(self) -> None:
        validate_identifier(self.name, "column")

    @property
    def is_json(self) -> bool:
        return self.type.upper() == "JSON"

    @property
    def is_timestamp(self) -> bool:
        return self.type.upper().startswith("TIMESTAMP")

    @property
    def target(self) -> tuple[str, str] | None:
        """Referenced (table, column), or None."""
        if not self.references:
            return None
        table, _, column = self.references.partition(".")
        return table, column or "id"

    def encode(self, value: Any) -> Any:
        """Validate and convert a Python value for binding."""
        if value is None:
            return None
        if self.is_json:
            try:
                return json.dumps(value)
            except (TypeError, ValueError) as e:
                raise ValidationError(
                    f"Value for JSON column '{self.name}' is not JSON-serialisable",
                    details={"column": self.name},
                    cause=e,
                )
        if isinstance(value, (list, tuple, dict)):
            raise ValidationError(
                f"Column '{self.name}' ({self.type}) does not accept {type(value).__name__} values",
                details={"column": self.name, "type": self.type},
            )
        if not isinstance(value, SCALAR_TYPES):
            raise ValidationError(
                f"Unsupported value type {type(value).__name__} for column '{self.name}'",
                details={"column": self.name},
            )
        if self.is_timestamp:
            if isinstance(value, str):
                value = _parse_timestamp(value, self.name)
            if isinstance(value, datetime):
                return _to_utc_naive(value)
        return value

    def decode(self, value: Any) -> Any:
        if value is None:
            return None
        if self.is_json and isinstance(value, str):
            try:
                return json.loads(value)
            except (json.JSONDecodeError, TypeError):
                return value
        return decode_generic(value)

    def ddl(self) -> str:
        parts = [quote_identifier(self.name), self.type]
        if not self.nullable:
            parts.append("NOT NULL")
        if self.unique:
            parts.append("UNIQUE")
        if self.default is not None:
            parts.append(f"DEFAULT {self.default}")
        return " ".join(parts)


@dataclass(frozen=True)
class TableSchema:
    """Declaration of one logical table."""

    name: str
    columns: tuple[Column, ...]
    primary_key: str = "id"
    unique_together: tuple[tuple[str, ...], ...] = ()
    _by_name: dict[str, Column] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        validate_identifier(self.name, "table")
        by_name = {col.name: col for col in self.columns}
        if len(by_name) != len(self.columns):
            raise ValueError(f"Duplicate column in schema '{self.name}'")
        if self.primary_key not in by_name:
            raise ValueError(f"Primary key '{self.primary_key}' is not a column of '{self.name}'")
        object.__setattr__(self, "_by_name", by_name)

    @property
    def column_names(self) -> list[str]:
        return [col.name for col in self.columns]

    def has_column(self, name: str) -> bool:
        return name in self._by_name

    def column(self, name: str) -> Column:
        try:
            return self._by_name[name]
        except KeyError:
            raise ValidationError(
                f"Column '{name}' does not exist on table '{self.name}'",
                details={"table": self.name, "column": name},
            ) from None

    def foreign_keys(self) -> list[Column]:
        return [col for col in self.columns if col.references]

    def ddl(self) -> str:
        """CREATE TABLE statement for this declaration."""
        lines = []
        for col in self.columns:
            line = col.ddl()
            if col.name == self.primary_key:
                line += " PRIMARY KEY"
            lines.append(line)
        for group in self.unique_together:
            cols = ", ".join(quote_identifier(c) for c in group)
            lines.append(f"UNIQUE ({cols})")
        body = ",\n    ".join(lines)
        return f"CREATE TABLE IF NOT EXISTS {quote_identifier(self.name)} (\n    {body}\n)"

    def encode_row(self, row: dict[str, Any], for_insert: bool = False) -> dict[str, Any]:
        """
        Validate a row against the declaration and encode its values.

        Args:
            row: Column name -> Python value
            for_insert: Fill auto_now columns that are absent

        Raises:
            ValidationError: Unknown column or unsupported value
        """
        unknown = [name for name in row if name not in self._by_name]
        if unknown:
            raise ValidationError(
                f"Unknown column(s) for table '{self.name}': {', '.join(sorted(unknown))}",
                details={"table": self.name, "columns": sorted(unknown)},
            )
        encoded = {name: self._by_name[name].encode(value) for name, value in row.items()}
        if for_insert:
            for col in self.columns:
                if col.auto_now and encoded.get(col.name) is None:
                    encoded[col.name] = utc_now()
        return encoded

    def decode_row(self, row: dict[str, Any]) -> dict[str, Any]:
        decoded = {}
        for name, value in row.items():
            col = self._by_name.get(name)
            decoded[name] = col.decode(value) if col else decode_generic(value)
        return decoded


# =============================================================================
# Core schemas owned by the emulation layer
# =============================================================================

USERS = TableSchema(
    name="users",
    columns=(
        Column("id"),
        Column("email", nullable=False, unique=True),
        Column("username"),
        Column("password_hash"),
        Column("account_status", default="'active'"),
        Column("role", default="'USER'"),
        Column("locked_until", "TIMESTAMP"),
        Column("last_login", "TIMESTAMP"),
        Column("created_at", "TIMESTAMP", auto_now=True),
        Column("updated_at", "TIMESTAMP", auto_now=True),
    ),
)

USER_SETTINGS = TableSchema(
    name="user_settings",
    primary_key="user_id",
    columns=(
        Column("user_id", references="users.id"),
        Column("theme", default="'light'"),
        Column("notifications_enabled", "BOOLEAN", default="true"),
        Column("email_notifications", "BOOLEAN", default="true"),
        Column("language", default="'it'"),
        Column("created_at", "TIMESTAMP", auto_now=True),
        Column("updated_at", "TIMESTAMP", auto_now=True),
    ),
)

AUTH_SESSIONS = TableSchema(
    name="auth_sessions",
    columns=(
        Column("id"),
        Column("user_id", nullable=False, references="users.id"),
        Column("created_at", "TIMESTAMP", auto_now=True),
        Column("expires_at", "TIMESTAMP", nullable=False),
        Column("ip_address"),
        Column("user_agent"),
        Column("is_valid", "BOOLEAN", default="true"),
        Column("device_info", "JSON"),
    ),
)

FAILED_LOGIN_ATTEMPTS = TableSchema(
    name="failed_login_attempts",
    columns=(
        Column("id"),
        Column("email", nullable=False),
        Column("user_id", references="users.id"),
        Column("ip_address"),
        Column("attempt_time", "TIMESTAMP", auto_now=True),
        Column("user_agent"),
    ),
)

STORAGE_BUCKETS = TableSchema(
    name="storage_buckets",
    columns=(
        Column("id"),
        Column("name", nullable=False, unique=True),
        Column("public", "BOOLEAN", default="false"),
        Column("owner_id", references="users.id"),
        Column("created_at", "TIMESTAMP", auto_now=True),
        Column("updated_at", "TIMESTAMP", auto_now=True),
    ),
)

STORAGE_FILES = TableSchema(
    name="storage_files",
    columns=(
        Column("id"),
        Column("bucket_name", nullable=False, references="storage_buckets.name"),
        Column("file_path", nullable=False),
        Column("file_name", nullable=False),
        Column("content_type"),
        Column("size", "BIGINT"),
        Column("owner_id", references="users.id"),
        Column("is_public", "BOOLEAN", default="false"),
        Column("created_at", "TIMESTAMP", auto_now=True),
        Column("updated_at", "TIMESTAMP", auto_now=True),
    ),
    unique_together=(("bucket_name", "file_path"),),
)

CORE_SCHEMAS: tuple[TableSchema, ...] = (
    USERS,
    USER_SETTINGS,
    AUTH_SESSIONS,
    FAILED_LOGIN_ATTEMPTS,
    STORAGE_BUCKETS,
    STORAGE_FILES,
)
