"""Main CLI entry point for localbase."""

from typing import Optional

import typer
import uvicorn

from localbase import __version__
from localbase.logs import setup_logging
from localbase.server import create_app

from .output import print_dict, print_json, print_success
from .runtime import configure_logging, get_client, run

app = typer.Typer(
    name="localbase",
    help="Operate a local record store and object storage directory",
    no_args_is_help=True,
)


class GlobalState:
    json_output: bool = False
    verbose: bool = False


state = GlobalState()


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        print(f"localbase version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    json_output: bool = typer.Option(
        False, "--json", "-j",
        help="Output as JSON instead of tables"
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v",
        help="Show debug logs on stderr"
    ),
    version: Optional[bool] = typer.Option(
        None, "--version", "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit"
    ),
) -> None:
    """localbase - local stand-in for a hosted database, auth and storage backend."""
    state.json_output = json_output
    state.verbose = verbose
    configure_logging(verbose)


@app.command("init")
def init() -> None:
    """Create the database file, core tables and configured buckets."""

    async def operation(client):
        return {
            "database": str(client.store.database_path),
            "storage": str(client.storage.root),
            "tables": sorted(schema.name for schema in client.store.schemas),
            "buckets": sorted(client.settings.buckets),
        }

    info = run(operation)
    if state.json_output:
        print_json(info)
    else:
        print_dict(info, title="localbase initialized")
        print_success("Ready")


@app.command("serve")
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address (default from settings)"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Port (default from settings)"),
) -> None:
    """Serve stored objects over HTTP."""
    client = get_client()
    setup_logging(debug=client.settings.debug)
    uvicorn.run(
        create_app(client),
        host=host or client.settings.host,
        port=port or client.settings.port,
        log_level="debug" if state.verbose else "info",
    )


# Import and register command groups
from .commands import buckets, files, query, users  # noqa: E402

app.add_typer(buckets.app, name="buckets")
app.add_typer(files.app, name="files")
app.add_typer(users.app, name="users")
app.command("query")(query.query)


if __name__ == "__main__":
    app()
