"""Bucket commands."""

import typer

from ..main import state
from ..output import print_json, print_table
from ..runtime import run, unwrap

app = typer.Typer(
    name="buckets",
    help="Inspect storage buckets",
    no_args_is_help=True,
)


@app.command("list")
def list_buckets() -> None:
    """List buckets."""
    buckets = unwrap(run(lambda client: client.storage.list_buckets()))

    if state.json_output:
        print_json({"buckets": buckets, "total": len(buckets)})
        return
    if not buckets:
        print("No buckets found")
        return

    print_table(
        [{"Name": b["name"], "Public": b.get("public"), "Created": (b.get("created_at") or "")[:19]} for b in buckets],
        columns=["Name", "Public", "Created"],
        title=f"Buckets (Total: {len(buckets)})",
    )
