"""Git source fetcher."""

from __future__ import annotations

import os
import re
import subprocess  # nosec B404
from pathlib import Path

from stackyard.deploy.base import SourceFetcher
from stackyard.lib.errors import FetchFailedError
from stackyard.lib.logging_config import get_logger

logger = get_logger(__name__)

# https://, http://, ssh://, git:// and file:// URLs, or scp-like git@host:path
_URL_PATTERN = re.compile(r"^((https?|ssh|git|file)://\S+|[\w.-]+@[\w.-]+:\S+)$")


def validate_source_url(source_url: str) -> None:
    """Reject URLs git would not understand (or would treat as an option).

    Raises:
        FetchFailedError: If the URL is not a supported git URL
    """
    if not source_url or source_url.startswith("-") or not _URL_PATTERN.match(source_url):
        raise FetchFailedError(f"invalid source URL: {source_url!r}")


class GitSourceFetcher(SourceFetcher):
    """Shallow-clones git repositories with the ``git`` CLI.

    Example:
        >>> fetcher = GitSourceFetcher(timeout=120)
        >>> fetcher.fetch("https://github.com/acme/demo.git", Path("/tmp/demo"))
    """

    def __init__(self, timeout: float | None = 300.0, depth: int = 1) -> None:
        """Initialize the fetcher.

        Args:
            timeout: Seconds before a clone is aborted (None for no limit)
            depth: History depth passed to ``git clone --depth``
        """
        self.timeout = timeout
        self.depth = depth

    def fetch(self, source_url: str, destination: Path) -> None:
        """Clone ``source_url`` into ``destination``.

        Args:
            source_url: Repository URL
            destination: Target directory (must not exist or be empty)

        Raises:
            FetchFailedError: If the URL is invalid or the clone fails
        """
        validate_source_url(source_url)
        logger.info(f"Cloning {source_url} into {destination}")

        try:
            result = subprocess.run(  # noqa: S603  # nosec B603 B607
                [  # noqa: S607
                    "git",
                    "clone",
                    "--depth",
                    str(self.depth),
                    "--",
                    source_url,
                    str(destination),
                ],
                capture_output=True,
                text=True,
                timeout=self.timeout,
                env={**os.environ, "GIT_TERMINAL_PROMPT": "0"},
            )
        except FileNotFoundError as e:
            raise FetchFailedError("git executable not found on PATH") from e
        except subprocess.TimeoutExpired as e:
            raise FetchFailedError(
                f"clone of {source_url} timed out after {self.timeout}s"
            ) from e

        if result.returncode != 0:
            stderr = result.stderr.strip().splitlines()
            reason = stderr[-1] if stderr else f"git exited with {result.returncode}"
            raise FetchFailedError(f"failed to clone {source_url}: {reason}")

        logger.debug(f"Cloned {source_url}")
