"""CLI command for writing a starter configuration file."""

from __future__ import annotations

import sys
from pathlib import Path

import click

from stackyard.config.defaults import CONFIG_TEMPLATE


@click.command(name="init-config")
@click.argument(
    "path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=Path("stackyard.yml"),
    required=False,
)
@click.option("--force", is_flag=True, help="Overwrite an existing file")
def init_config(path: Path, force: bool) -> None:
    """Write a starter configuration to PATH (default: stackyard.yml)."""
    if path.exists() and not force:
        click.secho(f"Error: {path} already exists (use --force to overwrite)", fg="red", err=True)
        sys.exit(1)

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(CONFIG_TEMPLATE, encoding="utf-8")
    click.secho(f"Wrote {path}", fg="green")
