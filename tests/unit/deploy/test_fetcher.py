"""Unit tests for the git source fetcher."""

from __future__ import annotations

import subprocess
from pathlib import Path
from unittest.mock import Mock, patch

import pytest

from stackyard.deploy.fetcher import GitSourceFetcher, validate_source_url
from stackyard.lib.errors import FetchFailedError


@pytest.mark.unit
class TestValidateSourceUrl:
    """Tests for source URL validation."""

    @pytest.mark.parametrize(
        "url",
        [
            "https://github.com/acme/demo.git",
            "http://git.internal/demo",
            "ssh://git@github.com/acme/demo.git",
            "git@github.com:acme/demo.git",
            "file:///srv/repos/demo",
        ],
    )
    def test_accepted(self, url: str) -> None:
        """Common git URL forms are accepted."""
        validate_source_url(url)

    @pytest.mark.parametrize(
        "url",
        ["", "not a url", "--upload-pack=touch /tmp/x", "ftp://host/repo"],
    )
    def test_rejected(self, url: str) -> None:
        """Anything git would misread is rejected."""
        with pytest.raises(FetchFailedError, match="invalid source URL"):
            validate_source_url(url)


@pytest.mark.unit
class TestGitSourceFetcher:
    """Tests for GitSourceFetcher.fetch()."""

    def test_shallow_clone_command(self, temp_dir: Path) -> None:
        """git clone is invoked shallowly with the URL after '--'."""
        fetcher = GitSourceFetcher(timeout=60, depth=1)
        destination = temp_dir / "source"

        with patch("subprocess.run") as mock_run:
            mock_run.return_value = Mock(returncode=0, stdout="", stderr="")

            fetcher.fetch("https://github.com/acme/demo.git", destination)

        command = mock_run.call_args[0][0]
        assert command == [
            "git",
            "clone",
            "--depth",
            "1",
            "--",
            "https://github.com/acme/demo.git",
            str(destination),
        ]
        kwargs = mock_run.call_args[1]
        assert kwargs["timeout"] == 60
        assert kwargs["env"]["GIT_TERMINAL_PROMPT"] == "0"
        assert "PATH" in kwargs["env"]

    def test_clone_failure_reports_last_stderr_line(self, temp_dir: Path) -> None:
        """A failed clone surfaces git's final error line."""
        fetcher = GitSourceFetcher()

        with patch("subprocess.run") as mock_run:
            mock_run.return_value = Mock(
                returncode=128,
                stdout="",
                stderr="Cloning into 'source'...\nfatal: repository not found\n",
            )

            with pytest.raises(FetchFailedError) as exc_info:
                fetcher.fetch("https://github.com/acme/ghost.git", temp_dir / "s")

        assert exc_info.value.operation == "fetch"
        assert "fatal: repository not found" in exc_info.value.message

    def test_timeout(self, temp_dir: Path) -> None:
        """A hanging clone is reported as a fetch failure."""
        fetcher = GitSourceFetcher(timeout=5)

        with patch(
            "subprocess.run", side_effect=subprocess.TimeoutExpired("git", 5)
        ):
            with pytest.raises(FetchFailedError, match="timed out"):
                fetcher.fetch("https://github.com/acme/demo.git", temp_dir / "s")

    def test_git_missing(self, temp_dir: Path) -> None:
        """A missing git binary is reported as a fetch failure."""
        with patch("subprocess.run", side_effect=FileNotFoundError("git")):
            with pytest.raises(FetchFailedError, match="git executable not found"):
                GitSourceFetcher().fetch(
                    "https://github.com/acme/demo.git", temp_dir / "s"
                )

    def test_invalid_url_never_runs_git(self, temp_dir: Path) -> None:
        """Validation happens before any subprocess is started."""
        with patch("subprocess.run") as mock_run:
            with pytest.raises(FetchFailedError):
                GitSourceFetcher().fetch("-oProxyCommand=evil", temp_dir / "s")

        mock_run.assert_not_called()
