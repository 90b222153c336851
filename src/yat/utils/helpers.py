"""
Helper utilities for the YAT extension host.
"""

import inspect
import sys
from collections.abc import Callable
from typing import Any

import click

from yat.utils.config import get_settings


async def call_maybe_async(func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    """Call ``func`` and await the result if it is awaitable.

    Extension hooks, scripts and adapter methods may be plain functions or
    coroutine functions; every call site goes through here.
    """
    result = func(*args, **kwargs)
    if inspect.isawaitable(result):
        result = await result
    return result


def validate_settings_or_exit() -> None:
    """
    Validate settings and exit with an error message if invalid.

    Warnings are echoed but do not stop the command.
    """
    settings = get_settings()
    validation_result = settings.validate_settings()

    for warning in validation_result.warnings:
        click.echo(f"Warning: {warning}")

    if not validation_result.valid:
        for error in validation_result.errors:
            click.echo(f"Error: {error}")
        sys.exit(1)
