"""Chainable query builders compiled to one parameterized statement each.

Builders are immutable: every chained call returns a new builder, so a
compiled query can never be changed behind the caller's back. Executing a
builder (``await builder`` or ``await builder.execute()``) always returns a
``Result``; failures never raise.

    result = await (
        client.table("courses")
        .select("id, title, instructor:users(email)")
        .eq("published", True)
        .order("created_at", desc=True)
        .limit(10)
    )
    if result.error:
        ...

Compiled form:
    SELECT <columns> FROM <table> [WHERE p1 AND p2 ...] [ORDER BY col ASC|DESC] [LIMIT ?] [OFFSET ?]

Predicate, limit and offset values are bound left to right.
"""

import re
import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from typing import Any, Generator

import structlog

from localbase.errors import NotFoundError, StoreError, ValidationError, translate_store_error
from localbase.results import Result, returns_result
from localbase.schema import quote_identifier, validate_identifier
from localbase.store import RecordStore

logger = structlog.get_logger()

_IS_KEYWORDS = {None: "NULL", True: "TRUE", False: "FALSE"}

_EMBED_RE = re.compile(
    r"^(?:(?P<alias>\w+)\s*:\s*)?(?P<resource>\w+)(?P<hints>(?:\s*!\s*\w+)*)\s*\((?P<columns>.*)\)$",
    re.DOTALL,
)
_FIELD_RE = re.compile(r"^(?:(?P<alias>\w+)\s*:\s*)?(?P<column>\w+|\*)$")


@dataclass(frozen=True)
class CompiledQuery:
    """SQL text plus bound parameters, ready for the record store."""

    sql: str
    params: tuple[Any, ...] = ()


@dataclass(frozen=True)
class Predicate:
    """One filter: column, operator, value."""

    column: str
    operator: str
    value: Any

    def compile(self, store: RecordStore, table: str) -> tuple[str, list[Any]]:
        column = quote_identifier(self.column)
        if self.operator == "IN":
            if isinstance(self.value, (str, bytes)) or not isinstance(self.value, Iterable):
                raise ValidationError(
                    "in_() expects a list of values",
                    details={"column": self.column, "value": repr(self.value)},
                )
            values = list(self.value)
            if not values:
                return "FALSE", []
            placeholders = ", ".join("?" for _ in values)
            return f"{column} IN ({placeholders})", [
                store.encode_value(table, self.column, v) for v in values
            ]
        if self.operator == "IS":
            return f"{column} IS {_IS_KEYWORDS[self.value]}", []
        return f"{column} {self.operator} ?", [store.encode_value(table, self.column, self.value)]


@dataclass(frozen=True)
class Ordering:
    column: str
    ascending: bool = True


# ============================================
# Projection parsing (plain columns + nested selects)
# ============================================


@dataclass(frozen=True)
class Embed:
    """A nested select such as ``instructor:users!instructor_id(email)``."""

    alias: str
    resource: str
    columns: str
    hint: str | None = None
    inner: bool = False

    @property
    def is_count(self) -> bool:
        return self.columns.strip() == "count"


@dataclass(frozen=True)
class Projection:
    fields: tuple[tuple[str, str | None], ...]
    embeds: tuple[Embed, ...] = ()

    @property
    def has_star(self) -> bool:
        return any(column == "*" for column, _ in self.fields)

    def output_names(self) -> set[str]:
        return {alias or column for column, alias in self.fields if column != "*"}


def split_top_level(text: str) -> list[str]:
    """Split on commas that are not nested inside parentheses."""
    parts, depth, current = [], 0, []
    for char in text:
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            if depth < 0:
                raise ValidationError(f"Unbalanced parentheses in select: {text!r}")
        if char == "," and depth == 0:
            parts.append("".join(current).strip())
            current = []
        else:
            current.append(char)
    if depth != 0:
        raise ValidationError(f"Unbalanced parentheses in select: {text!r}")
    parts.append("".join(current).strip())
    return [p for p in parts if p]


def parse_projection(columns: str) -> Projection:
    """
    Parse a select string.

    Supported items: ``*``, ``col``, ``alias:col`` and nested selects
    ``[alias:]resource[!hint][!inner](columns)``.
    """
    if not isinstance(columns, str):
        raise ValidationError("select() expects a comma separated string", details={"columns": repr(columns)})

    fields: list[tuple[str, str | None]] = []
    embeds: list[Embed] = []
    for item in split_top_level(columns) or ["*"]:
        if match := _FIELD_RE.match(item):
            alias, column = match.group("alias"), match.group("column")
            if column == "*" and alias:
                raise ValidationError(f"Cannot alias '*': {item!r}")
            if column != "*":
                validate_identifier(column, "column")
            fields.append((column, alias))
            continue

        if match := _EMBED_RE.match(item):
            hint, inner = None, False
            for part in re.findall(r"\w+", match.group("hints") or ""):
                if part == "inner":
                    inner = True
                elif part != "left":
                    hint = part
            resource = validate_identifier(match.group("resource"), "table")
            embeds.append(
                Embed(
                    alias=match.group("alias") or resource,
                    resource=resource,
                    columns=match.group("columns").strip() or "*",
                    hint=hint,
                    inner=inner,
                )
            )
            continue

        raise ValidationError(f"Invalid select item: {item!r}", details={"item": item})

    return Projection(fields=tuple(fields), embeds=tuple(embeds))


@dataclass(frozen=True)
class Relationship:
    """How embedded rows attach to parent rows."""

    kind: str  # "many_to_one" | "one_to_many"
    table: str
    local_column: str
    remote_column: str


def resolve_relationship(store: RecordStore, parent_table: str, embed: Embed) -> Relationship:
    """
    Resolve a nested select through declared foreign keys.

    The embed may name the related table, or a foreign key column of the
    parent (``user:user_id(email)``). The hint disambiguates between several
    foreign keys.

    Raises:
        ValidationError: No declared relationship, or more than one without a hint
    """
    parent = store.schema(parent_table)
    if parent is None:
        raise ValidationError(
            f"Nested select needs a declared schema for table '{parent_table}'",
            details={"table": parent_table, "embed": embed.resource},
        )

    if parent.has_column(embed.resource) and (target := parent.column(embed.resource).target):
        return Relationship("many_to_one", target[0], embed.resource, target[1])

    child = store.schema(embed.resource)
    if child is None:
        raise ValidationError(
            f"Could not find a relationship between '{parent_table}' and '{embed.resource}'",
            details={"table": parent_table, "embed": embed.resource},
        )

    many_to_one = [
        col for col in parent.foreign_keys()
        if col.target[0] == child.name and embed.hint in (None, col.name)
    ]
    one_to_many = [
        col for col in child.foreign_keys()
        if col.target[0] == parent.name and embed.hint in (None, col.name)
    ]
    if parent.name == child.name:
        one_to_many = []

    candidates = [("many_to_one", c) for c in many_to_one] + [("one_to_many", c) for c in one_to_many]
    if not candidates:
        raise ValidationError(
            f"Could not find a relationship between '{parent_table}' and '{embed.resource}'",
            details={"table": parent_table, "embed": embed.resource, "hint": embed.hint},
        )
    if len(candidates) > 1:
        raise ValidationError(
            f"More than one relationship between '{parent_table}' and '{embed.resource}'; "
            "add a hint such as table!column(...)",
            details={"table": parent_table, "embed": embed.resource, "columns": [c.name for _, c in candidates]},
        )

    kind, col = candidates[0]
    if kind == "many_to_one":
        return Relationship(kind, child.name, col.name, col.target[1])
    return Relationship(kind, child.name, col.target[1], col.name)


# ============================================
# Builders
# ============================================


@dataclass(frozen=True, eq=False)
class _FilterBuilder:
    """Shared filter methods. Each call appends one predicate (combined with AND)."""

    store: RecordStore
    table: str
    predicates: tuple[Predicate, ...] = ()

    def _where(self, column: str, operator: str, value: Any):
        return replace(self, predicates=self.predicates + (Predicate(column, operator, value),))

    def eq(self, column: str, value: Any):
        return self._where(column, "=", value)

    def neq(self, column: str, value: Any):
        return self._where(column, "!=", value)

    def gt(self, column: str, value: Any):
        return self._where(column, ">", value)

    def lt(self, column: str, value: Any):
        return self._where(column, "<", value)

    def gte(self, column: str, value: Any):
        return self._where(column, ">=", value)

    def lte(self, column: str, value: Any):
        return self._where(column, "<=", value)

    def like(self, column: str, pattern: str):
        return self._where(column, "LIKE", pattern)

    def ilike(self, column: str, pattern: str):
        return self._where(column, "ILIKE", pattern)

    def in_(self, column: str, values: Iterable[Any]):
        if isinstance(values, (list, set, frozenset)):
            values = tuple(values)
        return self._where(column, "IN", values)

    def is_(self, column: str, value: bool | None):
        return self._where(column, "IS", value)

    def match(self, query: dict[str, Any]):
        """Shorthand for one eq() per key, in mapping order."""
        builder = self
        for column, value in query.items():
            builder = builder.eq(column, value)
        return builder

    def _check_table(self) -> str:
        return validate_identifier(self.table, "table")

    def _check_column(self, column: str) -> str:
        validate_identifier(column, "column")
        schema = self.store.schema(self.table)
        if schema is not None:
            schema.column(column)
        return column

    def _compile_where(self) -> tuple[str, list[Any]]:
        if not self.predicates:
            return "", []
        clauses, params = [], []
        for predicate in self.predicates:
            self._check_column(predicate.column)
            if predicate.operator == "IS" and not (predicate.value is None or isinstance(predicate.value, bool)):
                raise ValidationError(
                    "is_() accepts only None, True or False",
                    details={"column": predicate.column, "value": repr(predicate.value)},
                )
            clause, values = predicate.compile(self.store, self.table)
            clauses.append(clause)
            params.extend(values)
        return " WHERE " + " AND ".join(clauses), params


def _check_count(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationError(f"{name} must be a non-negative integer", details={name: repr(value)})
    return value


@dataclass(frozen=True, eq=False)
class SelectQuery(_FilterBuilder):
    """Filter/sort/paginate builder for one table."""

    columns: str = "*"
    ordering: Ordering | None = None
    limit_count: int | None = None
    offset_count: int | None = None
    single_mode: str | None = None

    def select(self, columns: str = "*") -> "SelectQuery":
        return replace(self, columns=columns)

    def order(self, column: str, ascending: bool = True, desc: bool = False) -> "SelectQuery":
        """Sort by one column. A second call replaces the first."""
        return replace(self, ordering=Ordering(column, ascending and not desc))

    def limit(self, count: int) -> "SelectQuery":
        return replace(self, limit_count=count)

    def offset(self, count: int) -> "SelectQuery":
        return replace(self, offset_count=count)

    def range(self, start: int, end: int) -> "SelectQuery":
        """Rows start..end inclusive."""
        count = end
        if isinstance(start, int) and isinstance(end, int):
            count = max(end - start + 1, 0)
        return replace(self, offset_count=start, limit_count=count)

    def single(self) -> "SelectQuery":
        """Return exactly one row as data; zero or several rows is an error."""
        return replace(self, single_mode="single")

    def maybe_single(self) -> "SelectQuery":
        """Return one row or None; several rows is an error."""
        return replace(self, single_mode="maybe")

    # ----------------------------------------
    # Compilation
    # ----------------------------------------

    def _compile(self, extra_columns: Iterable[str] = ()) -> tuple[CompiledQuery, Projection, tuple[str, ...]]:
        table = self._check_table()
        projection = parse_projection(self.columns)

        required = list(extra_columns)
        inner_clauses = []
        for embed in projection.embeds:
            relation = resolve_relationship(self.store, table, embed)
            required.append(relation.local_column)
            if embed.inner:
                # parents without related rows are dropped before ORDER BY/LIMIT
                alias = quote_identifier(f"_inner_{len(inner_clauses)}")
                inner_clauses.append(
                    f"EXISTS (SELECT 1 FROM {quote_identifier(relation.table)} AS {alias} "
                    f"WHERE {alias}.{quote_identifier(relation.remote_column)} = "
                    f"{quote_identifier(table)}.{quote_identifier(relation.local_column)})"
                )

        select_list = []
        for column, alias in projection.fields:
            if column == "*":
                select_list.append("*")
                continue
            self._check_column(column)
            if alias:
                validate_identifier(alias, "alias")
                select_list.append(f"{quote_identifier(column)} AS {quote_identifier(alias)}")
            else:
                select_list.append(quote_identifier(column))

        hidden: list[str] = []
        if not projection.has_star:
            present = projection.output_names()
            for column in required:
                if column not in present and column not in hidden:
                    self._check_column(column)
                    hidden.append(column)
                    select_list.append(quote_identifier(column))
        if not select_list:
            select_list.append("*")

        where, params = self._compile_where()
        if inner_clauses:
            where += (" AND " if where else " WHERE ") + " AND ".join(inner_clauses)
        sql = f"SELECT {', '.join(select_list)} FROM {quote_identifier(table)}{where}"

        if self.ordering is not None:
            self._check_column(self.ordering.column)
            direction = "ASC" if self.ordering.ascending else "DESC"
            sql += f" ORDER BY {quote_identifier(self.ordering.column)} {direction}"
        if self.limit_count is not None:
            sql += " LIMIT ?"
            params.append(_check_count(self.limit_count, "limit"))
        if self.offset_count is not None:
            sql += " OFFSET ?"
            params.append(_check_count(self.offset_count, "offset"))

        return CompiledQuery(sql, tuple(params)), projection, tuple(hidden)

    def compile(self) -> CompiledQuery:
        """
        Compile to SQL text and parameters.

        Raises:
            ValidationError: Bad identifier, unknown column, bad limit/offset,
                unresolvable nested select
        """
        compiled, _, _ = self._compile()
        return compiled

    # ----------------------------------------
    # Execution
    # ----------------------------------------

    async def _load(self, extra_columns: Iterable[str] = ()) -> tuple[list[dict[str, Any]], tuple[str, ...]]:
        """Run the query, attach nested selects. Hidden helper columns are left in place."""
        compiled, projection, hidden = self._compile(extra_columns)
        raw = await self.store.get_all(compiled.sql, compiled.params)
        rows = [self.store.decode_row(self.table, row) for row in raw]
        for embed in projection.embeds:
            rows = await self._attach(rows, embed)
        return rows, hidden

    async def _attach(self, rows: list[dict[str, Any]], embed: Embed) -> list[dict[str, Any]]:
        relation = resolve_relationship(self.store, self.table, embed)
        keys = list(dict.fromkeys(
            row[relation.local_column] for row in rows if row.get(relation.local_column) is not None
        ))

        groups: dict[Any, list[dict[str, Any]]] = {}
        if keys and embed.is_count:
            remote = quote_identifier(relation.remote_column)
            placeholders = ", ".join("?" for _ in keys)
            counted = await self.store.get_all(
                f'SELECT {remote} AS "key", COUNT(*) AS "count" FROM {quote_identifier(relation.table)} '
                f"WHERE {remote} IN ({placeholders}) GROUP BY {remote}",
                [self.store.encode_value(relation.table, relation.remote_column, k) for k in keys],
            )
            for row in counted:
                key = self.store.decode_row(relation.table, {relation.remote_column: row["key"]})[relation.remote_column]
                groups[key] = [{"count": row["count"]}]
        elif keys:
            child = SelectQuery(self.store, relation.table, columns=embed.columns).in_(relation.remote_column, keys)
            child_rows, child_hidden = await child._load(extra_columns=(relation.remote_column,))
            for child_row in child_rows:
                key = child_row[relation.remote_column]
                groups.setdefault(key, []).append(
                    {k: v for k, v in child_row.items() if k not in child_hidden}
                )

        attached = []
        for row in rows:
            related = groups.get(row.get(relation.local_column))
            if embed.is_count:
                value: Any = related or [{"count": 0}]
            elif relation.kind == "many_to_one":
                value = related[0] if related else None
            else:
                value = related or []
            if embed.inner and not related:
                continue
            attached.append({**row, embed.alias: value})
        return attached

    @returns_result("select")
    async def execute(self) -> Any:
        try:
            rows, hidden = await self._load()
        except StoreError as e:
            raise translate_store_error(e, table=self.table)
        if hidden:
            rows = [{k: v for k, v in row.items() if k not in hidden} for row in rows]

        logger.debug("select_executed", table=self.table, rows=len(rows))

        if self.single_mode is None:
            return rows
        if len(rows) > 1:
            raise ValidationError(
                "JSON object requested, multiple rows returned",
                details={"table": self.table, "rows": len(rows)},
                code="multiple_rows",
            )
        if not rows:
            if self.single_mode == "maybe":
                return None
            raise NotFoundError(
                "JSON object requested, no rows returned",
                details={"table": self.table},
            )
        return rows[0]

    def __await__(self) -> Generator[Any, None, Result]:
        return self.execute().__await__()


@dataclass(frozen=True, eq=False)
class InsertQuery:
    """
    Insert (or upsert) builder.

    One statement per row; the primary key is generated when absent. Rows
    already written stay written if a later row fails.
    """

    store: RecordStore
    table: str
    rows: tuple[dict[str, Any], ...] = ()
    upsert: bool = False
    on_conflict: tuple[str, ...] = ("id",)

    def values(
        self,
        rows: dict[str, Any] | list[dict[str, Any]],
        on_conflict: str | Iterable[str] | None = None,
    ) -> "InsertQuery":
        if isinstance(rows, (list, tuple)):
            rows = tuple(rows)
        else:
            # a single mapping; anything else is rejected by compile_row
            rows = (rows,)
        query = replace(self, rows=rows)
        if on_conflict is not None:
            if isinstance(on_conflict, str):
                on_conflict = [c.strip() for c in on_conflict.split(",")]
            query = replace(query, on_conflict=tuple(on_conflict))
        return query

    def _primary_key(self) -> tuple[str, bool]:
        """Primary key column and whether localbase should generate it."""
        schema = self.store.schema(self.table)
        if schema is None:
            return "id", True
        return schema.primary_key, schema.column(schema.primary_key).default is None

    def compile_row(self, row: dict[str, Any]) -> CompiledQuery:
        table = validate_identifier(self.table, "table")
        if not isinstance(row, dict):
            raise ValidationError("Each inserted row must be a mapping", details={"row": repr(row)})
        row = dict(row)
        primary_key, generate = self._primary_key()
        if generate and row.get(primary_key) is None:
            row[primary_key] = str(uuid.uuid4())
        supplied = set(row)

        encoded = self.store.encode_row(table, row, for_insert=True)
        columns = [validate_identifier(c, "column") for c in encoded]
        column_sql = ", ".join(quote_identifier(c) for c in columns)
        placeholders = ", ".join("?" for _ in columns)
        sql = f"INSERT INTO {quote_identifier(table)} ({column_sql}) VALUES ({placeholders})"

        if self.upsert:
            conflict = [validate_identifier(c, "column") for c in self.on_conflict]
            updates = [c for c in columns if c not in conflict and c in supplied]
            target = ", ".join(quote_identifier(c) for c in conflict)
            if updates:
                assignments = ", ".join(f"{quote_identifier(c)} = EXCLUDED.{quote_identifier(c)}" for c in updates)
                sql += f" ON CONFLICT ({target}) DO UPDATE SET {assignments}"
            else:
                sql += f" ON CONFLICT ({target}) DO NOTHING"

        sql += " RETURNING *"
        return CompiledQuery(sql, tuple(encoded.values()))

    @returns_result("insert")
    async def execute(self) -> list[dict[str, Any]]:
        inserted = []
        for row in self.rows:
            compiled = self.compile_row(row)
            try:
                result = await self.store.get_all(compiled.sql, compiled.params)
            except StoreError as e:
                raise translate_store_error(e, table=self.table)
            inserted.extend(self.store.decode_row(self.table, r) for r in result)

        logger.info("rows_inserted", table=self.table, count=len(inserted), upsert=self.upsert)
        return inserted

    def __await__(self) -> Generator[Any, None, Result]:
        return self.execute().__await__()


@dataclass(frozen=True, eq=False)
class _MutationBuilder(_FilterBuilder):
    require_filters: bool = False

    def _check_scope(self, operation: str) -> None:
        if self.require_filters and not self.predicates:
            raise ValidationError(
                f"{operation} on '{self.table}' requires at least one filter",
                details={"table": self.table},
                code="unscoped_mutation",
            )
        if not self.predicates:
            logger.warning("unscoped_mutation", operation=operation, table=self.table)


@dataclass(frozen=True, eq=False)
class UpdateQuery(_MutationBuilder):
    """``update(table).eq(...).set(data)``; returns the updated rows."""

    changes: dict[str, Any] = field(default_factory=dict)

    def set(self, data: dict[str, Any]) -> "UpdateQuery":
        return replace(self, changes=dict(data))

    def compile(self) -> CompiledQuery:
        table = self._check_table()
        if not isinstance(self.changes, dict) or not self.changes:
            raise ValidationError("update requires set() with at least one column", details={"table": table})
        self._check_scope("update")

        encoded = self.store.encode_row(table, self.changes)
        assignments = ", ".join(f"{quote_identifier(validate_identifier(c, 'column'))} = ?" for c in encoded)
        where, where_params = self._compile_where()
        sql = f"UPDATE {quote_identifier(table)} SET {assignments}{where} RETURNING *"
        return CompiledQuery(sql, tuple(encoded.values()) + tuple(where_params))

    @returns_result("update")
    async def execute(self) -> list[dict[str, Any]]:
        compiled = self.compile()
        try:
            rows = await self.store.get_all(compiled.sql, compiled.params)
        except StoreError as e:
            raise translate_store_error(e, table=self.table)
        logger.info("rows_updated", table=self.table, count=len(rows))
        return [self.store.decode_row(self.table, r) for r in rows]

    def __await__(self) -> Generator[Any, None, Result]:
        return self.execute().__await__()


@dataclass(frozen=True, eq=False)
class DeleteQuery(_MutationBuilder):
    """``delete(table).eq(...).execute()``; returns the deleted rows."""

    def compile(self) -> CompiledQuery:
        table = self._check_table()
        self._check_scope("delete")
        where, params = self._compile_where()
        return CompiledQuery(f"DELETE FROM {quote_identifier(table)}{where} RETURNING *", tuple(params))

    @returns_result("delete")
    async def execute(self) -> list[dict[str, Any]]:
        compiled = self.compile()
        try:
            rows = await self.store.get_all(compiled.sql, compiled.params)
        except StoreError as e:
            raise translate_store_error(e, table=self.table)
        logger.info("rows_deleted", table=self.table, count=len(rows))
        return [self.store.decode_row(self.table, r) for r in rows]

    def __await__(self) -> Generator[Any, None, Result]:
        return self.execute().__await__()
