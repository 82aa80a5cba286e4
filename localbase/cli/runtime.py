"""Run client operations from synchronous typer commands."""

import asyncio
import logging
import sys
from typing import Any, Awaitable, Callable, TypeVar

import typer

from localbase.client import LocalClient
from localbase.config import Settings
from localbase.logs import setup_logging
from localbase.results import Result

from .output import print_error

T = TypeVar("T")


def configure_logging(verbose: bool) -> None:
    """Debug logs on stderr with --verbose, errors only otherwise."""
    level = logging.DEBUG if verbose else logging.ERROR
    setup_logging(debug=True, level=level, stream=sys.stderr)


def get_client() -> LocalClient:
    """Client for the data directory configured through LOCALBASE_* variables."""
    return LocalClient(Settings())


def run(operation: Callable[[LocalClient], Awaitable[T]]) -> T:
    """Initialize a client and run one async operation against it."""

    async def main() -> T:
        client = get_client()
        try:
            await client.initialize()
            return await operation(client)
        finally:
            client.close()

    return asyncio.run(main())


def unwrap(result: Result) -> Any:
    """Return result data, or print the error and exit with status 1."""
    if result.error:
        print_error(f"{result.error.message} ({result.error.code})")
        raise typer.Exit(1)
    return result.data
