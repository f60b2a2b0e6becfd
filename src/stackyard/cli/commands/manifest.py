"""CLI commands for inspecting and editing the manifest document.

These commands edit desired state only; the orchestrator picks the
changes up on the next reconciliation.
"""

from __future__ import annotations

from pathlib import Path

import click

from stackyard.cli.errors import handle_cli_errors
from stackyard.config.loader import load_platform_config
from stackyard.lib.errors import NotFoundError
from stackyard.lib.logging_config import setup_logging
from stackyard.manifest.scanner import scan
from stackyard.manifest.store import ManifestStore
from stackyard.models.app import LABEL_PREFIX


@click.group(name="manifest")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Configuration file (default: ./stackyard.yml if present)",
)
@click.option(
    "--file",
    "-f",
    "manifest_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Manifest document (overrides the configured manifest_path)",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.pass_context
def manifest(
    ctx: click.Context,
    config_path: Path | None,
    manifest_path: Path | None,
    verbose: bool,
) -> None:
    """Inspect and edit the manifest document without reconciling.

    Subcommands:

        ls      List declared services
        show    Print one service block as written
        scale   Set the replica count of a service
        remove  Delete a service block
    """
    setup_logging(verbose=verbose, quiet=not verbose)
    with handle_cli_errors():
        config = load_platform_config(
            config_path, overrides={"manifest_path": manifest_path}
        )
    ctx.obj = ManifestStore(
        config.manifest_path,
        registry=config.registry,
        resources=config.resources,
        routing=config.routing,
    )


@manifest.command(name="ls")
@click.pass_obj
def list_services(store: ManifestStore) -> None:
    """List declared services."""
    with handle_cli_errors():
        blocks = store.list_blocks()

    if not blocks:
        click.echo(f"No services declared in {store.path}")
        return

    click.secho(f"{'NAME':<24} {'REPLICAS':>8}  {'DOMAIN':<32} IMAGE", bold=True)
    for block in blocks:
        replicas = "-" if block.replicas is None else str(block.replicas)
        domain = block.labels.get(f"{LABEL_PREFIX}.domain", "-")
        click.echo(f"{block.name:<24} {replicas:>8}  {domain:<32} {block.image or '-'}")


@manifest.command()
@click.argument("name")
@click.pass_obj
def show(store: ManifestStore, name: str) -> None:
    """Print the service block NAME exactly as it appears in the document."""
    with handle_cli_errors():
        layout = scan(store.read(), source=str(store.path))
        extent = layout.find(name)
        if extent is None:
            raise NotFoundError(str(store.path), name)
        click.echo(layout.block_text(extent), nl=False)


@manifest.command()
@click.argument("name")
@click.argument("replicas", type=click.IntRange(min=0))
@click.pass_obj
def scale(store: ManifestStore, name: str, replicas: int) -> None:
    """Set the replica count of service NAME to REPLICAS."""
    with handle_cli_errors():
        store.set_replicas(name, replicas)
    click.secho(f"Set replicas of '{name}' to {replicas}", fg="green")


@manifest.command()
@click.argument("name")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@click.pass_obj
def remove(store: ManifestStore, name: str, yes: bool) -> None:
    """Delete the service block NAME."""
    if not yes:
        click.confirm(f"Remove '{name}' from {store.path}?", abort=True)
    with handle_cli_errors():
        store.remove(name)
    click.secho(f"Removed '{name}'", fg="green")
