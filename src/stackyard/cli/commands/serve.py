"""CLI command for running the control plane.

Implements the 'stackyard serve' command, which exposes the deployment
pipeline, app listing and status event stream over HTTP.
"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import click

from stackyard.cli.errors import handle_cli_errors
from stackyard.config.loader import load_platform_config
from stackyard.lib.logging_config import get_logger, setup_logging
from stackyard.models.config import PlatformConfig

logger = get_logger(__name__)


@click.command()
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Configuration file (default: ./stackyard.yml if present)",
)
@click.option(
    "--port",
    "-p",
    type=int,
    default=None,
    help="Port to listen on (default: 3030)",
)
@click.option(
    "--host",
    "-h",
    type=str,
    default=None,
    help="Host to bind to (default: 127.0.0.1 for local-only access)",
)
@click.option(
    "--manifest",
    "manifest_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Manifest document to manage (default: stack.yml)",
)
@click.option(
    "--cors-origins",
    type=str,
    default=None,
    help="Comma-separated list of allowed CORS origins",
)
@click.option(
    "--teardown/--no-teardown",
    default=None,
    help="Remove the stack when the control plane stops",
)
@click.option(
    "--debug/--no-debug",
    default=False,
    help="Enable debug logging",
)
def serve(
    config_path: Path | None,
    port: int | None,
    host: str | None,
    manifest_path: Path | None,
    cors_origins: str | None,
    teardown: bool | None,
    debug: bool,
) -> None:
    """Run the HTTP control plane.

    Example:

        stackyard serve

        stackyard serve --config stackyard.yml --port 9000

    Endpoints:

        POST /create   Deploy an application (progress on /ws)
        POST /start    Scale an application to one replica
        POST /stop     Scale an application to zero replicas
        POST /remove   Remove an application
        GET  /apps     List applications
        GET  /ws       Status event stream (WebSocket)
    """
    setup_logging(verbose=debug)

    origins = None
    if cors_origins is not None:
        origins = [o.strip() for o in cors_origins.split(",") if o.strip()]

    with handle_cli_errors():
        config = load_platform_config(
            config_path,
            overrides={
                "server.host": host,
                "server.port": port,
                "server.cors_origins": origins,
                "manifest_path": manifest_path,
                "teardown_on_shutdown": teardown,
            },
        )
        logger.debug(
            f"Resolved configuration: stack={config.stack_name}, "
            f"manifest={config.manifest_path}, registry={config.registry.url}"
        )
        try:
            asyncio.run(_run_server(config, debug))
        except KeyboardInterrupt:
            logger.info("Server interrupted by user (Ctrl+C)")
            click.echo()
            click.secho("Server stopped.", fg="yellow")
            sys.exit(130)


async def _run_server(config: PlatformConfig, debug: bool) -> None:
    """Run the HTTP server until uvicorn exits, then shut the control plane down.

    Args:
        config: Resolved platform configuration.
        debug: Enable debug mode.
    """
    import uvicorn

    from stackyard.serve.server import ControlPlaneServer

    server = ControlPlaneServer(config, debug=debug)
    app = server.create_app()
    await server.start()

    _display_startup_info(config)

    uvicorn_config = uvicorn.Config(
        app=app,
        host=config.server.host,
        port=config.server.port,
        log_level="debug" if debug else "info",
    )
    server_instance = uvicorn.Server(uvicorn_config)

    try:
        await server_instance.serve()
    finally:
        await server.stop()


def _display_startup_info(config: PlatformConfig) -> None:
    """Display server startup information."""
    base_url = f"http://{config.server.host}:{config.server.port}"
    click.echo()
    click.secho("Stackyard control plane", bold=True)
    click.echo(f"  Stack:     {config.stack_name}")
    click.echo(f"  Manifest:  {config.manifest_path}")
    click.echo(f"  Registry:  {config.registry.url}")
    click.echo(f"  API:       {base_url}")
    click.echo(f"  Events:    ws://{config.server.host}:{config.server.port}/ws")
    click.echo()
