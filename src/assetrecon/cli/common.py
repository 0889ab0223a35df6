"""Shared helpers for CLI commands."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar
from uuid import UUID

import typer
from rich.console import Console

from assetrecon.errors import ReconciliationError
from assetrecon.services import Services, open_services

T = TypeVar("T")

console = Console()


def parse_uuid(value: str, label: str = "ID") -> UUID:
    """Parse a UUID argument, exiting with an error message when invalid."""
    try:
        return UUID(value)
    except ValueError:
        console.print(f"[red]Invalid {label}:[/red] {value}")
        raise typer.Exit(code=1) from None


def run_with_services(
    operation: Callable[[Services], Awaitable[T]],
    **service_options: Any,
) -> T:
    """Open services, run an async operation with them, and close them.

    Domain errors and configuration errors are printed and turned into a
    non-zero exit code.

    Args:
        operation: Async callable receiving the services
        **service_options: Extra keyword arguments for open_services

    Returns:
        The operation's result
    """
    from assetrecon.main import get_app_context

    config = get_app_context().config

    async def _run() -> T:
        async with open_services(config, **service_options) as services:
            return await operation(services)

    try:
        return asyncio.run(_run())
    except ReconciliationError as e:
        console.print(f"[red]{type(e).__name__}:[/red] {e}")
        raise typer.Exit(code=1) from e
    except ValueError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(code=1) from e
