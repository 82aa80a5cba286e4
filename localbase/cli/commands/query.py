"""Ad-hoc table queries."""

from typing import Any, Optional

import typer

from localbase.schema import TableSchema

from ..main import state
from ..output import print_json, print_table
from ..runtime import run, unwrap


def parse_filter(text: str) -> tuple[str, str]:
    column, sep, value = text.partition("=")
    if not sep or not column:
        raise typer.BadParameter(f"expected COLUMN=VALUE, got {text!r}")
    return column.strip(), value


def coerce(schema: TableSchema | None, column: str, value: str) -> Any:
    """Convert a command-line string to the column's declared type."""
    if schema is None or not schema.has_column(column):
        return value
    kind = schema.column(column).type.upper()
    if kind == "BOOLEAN":
        return value.strip().lower() in ("true", "1", "yes")
    if kind in ("INTEGER", "BIGINT", "SMALLINT", "TINYINT"):
        return int(value)
    if kind in ("DOUBLE", "FLOAT", "REAL") or kind.startswith("DECIMAL"):
        return float(value)
    return value


def query(
    table: str = typer.Argument(..., help="Table name"),
    select: str = typer.Option("*", "--select", "-s", help="Projection, e.g. 'id, email, user_settings(*)'"),
    eq: list[str] = typer.Option([], "--eq", help="COLUMN=VALUE equality filter (repeatable)"),
    order: Optional[str] = typer.Option(None, "--order", "-o", help="Sort column"),
    desc: bool = typer.Option(False, "--desc", help="Sort descending"),
    limit: Optional[int] = typer.Option(None, "--limit", "-l", help="Maximum rows"),
    offset: Optional[int] = typer.Option(None, "--offset", help="Rows to skip"),
) -> None:
    """Select rows from a table."""
    filters = [parse_filter(item) for item in eq]

    async def operation(client):
        schema = client.store.schema(table)
        builder = client.table(table).select(select)
        for column, value in filters:
            try:
                builder = builder.eq(column, coerce(schema, column, value))
            except ValueError as e:
                raise typer.BadParameter(f"{column}: {e}") from e
        if order:
            builder = builder.order(order, desc=desc)
        if limit is not None:
            builder = builder.limit(limit)
        if offset is not None:
            builder = builder.offset(offset)
        return await builder

    rows = unwrap(run(operation))

    if state.json_output:
        print_json({"rows": rows, "total": len(rows)})
        return
    if not rows:
        print(f"No rows found in '{table}'")
        return
    print_table(rows, title=f"{table} ({len(rows)} rows)")
