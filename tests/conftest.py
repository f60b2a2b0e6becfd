"""Pytest configuration and shared fixtures for Stackyard tests."""

from __future__ import annotations

import os
import shutil
import tempfile
import threading
import time
from collections.abc import Callable, Generator
from pathlib import Path
from typing import Any

import pytest

from stackyard.deploy.base import BuildResult, ImageBuilder, Reconciler, SourceFetcher
from stackyard.deploy.pipeline import PipelineController
from stackyard.events.bus import StatusEventBus
from stackyard.lib.metrics import PlatformMetrics
from stackyard.manifest.store import ManifestStore
from stackyard.models.app import ApplicationSpec

SAMPLE_MANIFEST = """\
version: "3.8"

# shared overlay for the router and every app
networks:
  stackyard_overlay:
    name: stackyard_overlay
    driver: overlay
    attachable: true

services:
  traefik:
    image: traefik:v3.0   # pinned
    ports:
      - "80:80"

    deploy:
      replicas: 1
      placement:
        constraints: [node.role == manager]

  registry:
    image: registry:2
    deploy:
      replicas: 1

volumes:
  registry-data: {}
"""


@pytest.fixture
def temp_dir() -> Generator[Path]:
    """Create a temporary directory for test file operations.

    Yields:
        Path to temporary directory

    Cleanup:
        Automatically removes directory after test
    """
    tmp = Path(tempfile.mkdtemp())
    yield tmp
    shutil.rmtree(tmp, ignore_errors=True)


@pytest.fixture
def isolated_env() -> Generator[dict[str, str]]:
    """Provide isolated environment variables for testing.

    Saves current environment and restores after test.
    """
    original_env = os.environ.copy()
    yield original_env
    os.environ.clear()
    os.environ.update(original_env)


@pytest.fixture
def make_spec() -> Callable[..., ApplicationSpec]:
    """Factory for ApplicationSpecs with sensible defaults."""

    def _make(name: str = "demo", **overrides: Any) -> ApplicationSpec:
        data: dict[str, Any] = {
            "name": name,
            "source_url": f"https://github.com/acme/{name}.git",
        }
        data.update(overrides)
        return ApplicationSpec(**data)

    return _make


@pytest.fixture
def manifest_path(temp_dir: Path) -> Path:
    """Manifest document pre-populated with infrastructure services."""
    path = temp_dir / "stack.yml"
    path.write_text(SAMPLE_MANIFEST, encoding="utf-8")
    return path


@pytest.fixture
def store(manifest_path: Path) -> ManifestStore:
    """ManifestStore over the sample manifest."""
    return ManifestStore(manifest_path)


@pytest.fixture
def sample_manifest() -> str:
    """Text of a manifest declaring two infrastructure services."""
    return SAMPLE_MANIFEST


# =============================================================================
# Fake pipeline collaborators
# =============================================================================


class FakeFetcher(SourceFetcher):
    """Writes a small repository instead of cloning one."""

    def __init__(self) -> None:
        self.files: dict[str, str] = {"package.json": "{}\n", "index.js": ""}
        self.calls: list[tuple[str, Path]] = []
        self.error: BaseException | None = None
        self.gate: threading.Event | None = None
        self.started = threading.Event()

    def fetch(self, source_url: str, destination: Path) -> None:
        self.calls.append((source_url, destination))
        self.started.set()
        if self.gate is not None:
            self.gate.wait(timeout=5)
            return
        if self.error is not None:
            raise self.error
        for relative, content in self.files.items():
            target = destination / relative
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")


class FakeBuilder(ImageBuilder):
    """Records builds and pushes without talking to Docker."""

    def __init__(self, registry: str = "localhost:5000") -> None:
        self.registry = registry
        self.builds: list[tuple[str, Path, bool]] = []
        self.published: list[str] = []
        self.build_error: BaseException | None = None
        self.publish_error: BaseException | None = None

    def build(
        self,
        spec: ApplicationSpec,
        build_context: Path,
        labels: dict[str, str] | None = None,
    ) -> BuildResult:
        self.builds.append(
            (spec.name, build_context, (build_context / "Dockerfile").is_file())
        )
        if self.build_error is not None:
            raise self.build_error
        image_name = spec.image_name(self.registry)
        return BuildResult(
            image_id="sha256:0123456789ab",
            image_name=image_name,
            tag="latest",
            full_name=f"{image_name}:latest",
        )

    def publish(self, result: BuildResult) -> str | None:
        if self.publish_error is not None:
            raise self.publish_error
        self.published.append(result.full_name)
        return "sha256:feedface"


class FakeReconciler(Reconciler):
    """Records the manifest handed to the orchestrator."""

    def __init__(self) -> None:
        self.applied: list[str] = []
        self.error: BaseException | None = None
        self.delay = 0.0
        self.teardowns = 0
        self.teardown_error: BaseException | None = None
        self.teardown_delay = 0.0

    def apply(self, manifest_path: Path) -> None:
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        self.applied.append(Path(manifest_path).read_text(encoding="utf-8"))

    def teardown(self) -> None:
        self.teardowns += 1
        if self.teardown_delay:
            time.sleep(self.teardown_delay)
        if self.teardown_error is not None:
            raise self.teardown_error


@pytest.fixture
def fetcher() -> FakeFetcher:
    """Fake source fetcher."""
    return FakeFetcher()


@pytest.fixture
def builder() -> FakeBuilder:
    """Fake image builder."""
    return FakeBuilder()


@pytest.fixture
def reconciler() -> FakeReconciler:
    """Fake stack reconciler."""
    return FakeReconciler()


@pytest.fixture
def bus() -> StatusEventBus:
    """Event bus large enough that tests never lag."""
    return StatusEventBus(capacity=512)


@pytest.fixture
def metrics() -> PlatformMetrics:
    """Metrics on a private registry."""
    return PlatformMetrics()


@pytest.fixture
def controller(
    store: ManifestStore,
    bus: StatusEventBus,
    fetcher: FakeFetcher,
    builder: FakeBuilder,
    reconciler: FakeReconciler,
    metrics: PlatformMetrics,
    temp_dir: Path,
) -> PipelineController:
    """PipelineController wired to the fake collaborators."""
    return PipelineController(
        store,
        bus,
        fetcher=fetcher,
        builder=builder,
        reconciler=reconciler,
        workspace_root=temp_dir / "work",
        metrics=metrics,
    )
