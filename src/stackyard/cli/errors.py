"""Shared error handling for CLI commands."""

from __future__ import annotations

import sys
from collections.abc import Generator
from contextlib import contextmanager

import click

from stackyard.lib.errors import ConfigError, DeploymentError, StackyardError
from stackyard.lib.logging_config import get_logger

logger = get_logger(__name__)


@contextmanager
def handle_cli_errors() -> Generator[None, None, None]:
    """Context manager for consistent error handling in CLI commands.

    Catches and handles ConfigError, StackyardError, and unexpected exceptions
    with appropriate logging, user feedback, and exit codes.

    Exit codes:
        2: Configuration error
        3: Operation error
    """
    try:
        yield
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        click.secho("Error: Configuration error", fg="red", err=True)
        click.echo(f"  {e.message}", err=True)
        sys.exit(2)
    except DeploymentError as e:
        logger.error(f"Deployment error: {e}")
        click.secho(f"Error: {e.operation} failed", fg="red", err=True)
        click.echo(f"  {e.message}", err=True)
        sys.exit(3)
    except StackyardError as e:
        logger.error(f"Operation failed: {e}")
        click.secho(f"Error: {e}", fg="red", err=True)
        sys.exit(3)
    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        click.secho(f"Error: {e}", fg="red", err=True)
        sys.exit(3)
