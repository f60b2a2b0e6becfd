"""Stackyard command line entry point."""

from __future__ import annotations

import click

from stackyard import __version__
from stackyard.cli.commands.config import init_config
from stackyard.cli.commands.manifest import manifest
from stackyard.cli.commands.serve import serve


@click.group()
@click.version_option(__version__, prog_name="stackyard")
def main() -> None:
    """Stackyard - deploy git repositories as services on a swarm stack.

    Commands:

        serve        Run the HTTP control plane
        manifest     Inspect and edit the manifest document offline
        init-config  Write a starter stackyard.yml
    """


main.add_command(serve)
main.add_command(manifest)
main.add_command(init_config)


if __name__ == "__main__":
    main()
