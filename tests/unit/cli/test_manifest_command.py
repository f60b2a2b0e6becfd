"""Unit tests for the stackyard manifest CLI commands.

Tests cover:
- Listing, showing, scaling and removing service blocks
- Error handling and exit codes for missing services and bad config
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest
from click.testing import CliRunner

from stackyard.cli.main import main
from stackyard.manifest.store import ManifestStore
from stackyard.models.app import ApplicationSpec

SpecFactory = Callable[..., ApplicationSpec]


@pytest.fixture
def runner(temp_dir: Path, monkeypatch: pytest.MonkeyPatch) -> CliRunner:
    """CLI runner working in an empty directory."""
    monkeypatch.chdir(temp_dir)
    for name in ("STACKYARD_MANIFEST_PATH", "STACKYARD_STACK_NAME"):
        monkeypatch.delenv(name, raising=False)
    return CliRunner()


@pytest.mark.unit
class TestManifestLs:
    """Tests for 'stackyard manifest ls'."""

    def test_lists_services(
        self,
        runner: CliRunner,
        store: ManifestStore,
        manifest_path: Path,
        make_spec: SpecFactory,
    ) -> None:
        """Every service is printed with replicas and domain."""
        store.add(make_spec("demo"), replicas=2)

        result = runner.invoke(main, ["manifest", "-f", str(manifest_path), "ls"])

        assert result.exit_code == 0, result.output
        lines = result.output.splitlines()
        assert lines[0].split() == ["NAME", "REPLICAS", "DOMAIN", "IMAGE"]
        demo = next(line for line in lines if line.startswith("demo"))
        assert demo.split()[:3] == ["demo", "2", "demo.localhost"]
        assert any(line.startswith("traefik") for line in lines)

    def test_empty_manifest(self, runner: CliRunner, temp_dir: Path) -> None:
        """A missing manifest lists nothing."""
        result = runner.invoke(
            main, ["manifest", "-f", str(temp_dir / "none.yml"), "ls"]
        )

        assert result.exit_code == 0
        assert "No services declared" in result.output


@pytest.mark.unit
class TestManifestShow:
    """Tests for 'stackyard manifest show'."""

    def test_prints_raw_block(
        self, runner: CliRunner, manifest_path: Path, sample_manifest: str
    ) -> None:
        """The block is printed exactly as written, comments included."""
        result = runner.invoke(
            main, ["manifest", "-f", str(manifest_path), "show", "traefik"]
        )

        assert result.exit_code == 0
        assert result.output.startswith("  traefik:\n    image: traefik:v3.0   # pinned")
        assert result.output in sample_manifest

    def test_unknown_service(self, runner: CliRunner, manifest_path: Path) -> None:
        """Unknown services exit with the operation error code."""
        result = runner.invoke(
            main, ["manifest", "-f", str(manifest_path), "show", "ghost"]
        )

        assert result.exit_code == 3
        assert "service 'ghost' not found" in result.output


@pytest.mark.unit
class TestManifestScale:
    """Tests for 'stackyard manifest scale'."""

    def test_scale(
        self, runner: CliRunner, store: ManifestStore, manifest_path: Path
    ) -> None:
        """The replicas field is rewritten."""
        result = runner.invoke(
            main, ["manifest", "-f", str(manifest_path), "scale", "registry", "0"]
        )

        assert result.exit_code == 0
        assert "Set replicas of 'registry' to 0" in result.output
        assert store.get("registry").replicas == 0

    def test_negative_rejected_by_cli(
        self, runner: CliRunner, manifest_path: Path
    ) -> None:
        """Negative counts are rejected before touching the file."""
        result = runner.invoke(
            main, ["manifest", "-f", str(manifest_path), "scale", "registry", "-1"]
        )

        assert result.exit_code == 2


@pytest.mark.unit
class TestManifestRemove:
    """Tests for 'stackyard manifest remove'."""

    def test_remove_with_confirmation(
        self, runner: CliRunner, store: ManifestStore, manifest_path: Path
    ) -> None:
        """The block is deleted after confirming."""
        result = runner.invoke(
            main,
            ["manifest", "-f", str(manifest_path), "remove", "registry"],
            input="y\n",
        )

        assert result.exit_code == 0
        assert store.names() == ["traefik"]

    def test_declined_confirmation(
        self,
        runner: CliRunner,
        manifest_path: Path,
        sample_manifest: str,
    ) -> None:
        """Answering no leaves the manifest alone."""
        result = runner.invoke(
            main,
            ["manifest", "-f", str(manifest_path), "remove", "registry"],
            input="n\n",
        )

        assert result.exit_code == 1
        assert manifest_path.read_text() == sample_manifest

    def test_remove_yes_flag(
        self, runner: CliRunner, store: ManifestStore, manifest_path: Path
    ) -> None:
        """--yes skips the prompt."""
        result = runner.invoke(
            main, ["manifest", "-f", str(manifest_path), "remove", "traefik", "--yes"]
        )

        assert result.exit_code == 0
        assert store.names() == ["registry"]


@pytest.mark.unit
def test_invalid_config_exits_with_config_code(
    runner: CliRunner, temp_dir: Path
) -> None:
    """Configuration errors exit with code 2."""
    config = temp_dir / "bad.yml"
    config.write_text("stack_name: Not Valid\n")

    result = runner.invoke(main, ["manifest", "-c", str(config), "ls"])

    assert result.exit_code == 2
    assert "Configuration error" in result.output
