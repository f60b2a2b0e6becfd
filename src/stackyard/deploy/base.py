"""Base interfaces for the pipeline's external collaborators.

The pipeline controller only talks to these interfaces; the Docker-backed
implementations live in ``fetcher``, ``builder`` and ``reconciler``.
All methods are blocking and are run off the event loop by the controller.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path

from stackyard.models.app import ApplicationSpec


@dataclass
class BuildResult:
    """Result of a container image build operation.

    Attributes:
        image_id: The SHA256 ID of the built image
        image_name: The repository/image name
        tag: The image tag
        full_name: Full image reference (name:tag)
        log_lines: Build log output lines
    """

    image_id: str
    image_name: str
    tag: str
    full_name: str
    log_lines: list[str] = field(default_factory=list)


class SourceFetcher(ABC):
    """Retrieves application source into a local directory."""

    @abstractmethod
    def fetch(self, source_url: str, destination: Path) -> None:
        """Materialize the repository at ``source_url`` into ``destination``.

        Raises:
            FetchFailedError: If the URL is invalid or retrieval fails.
        """


class ImageBuilder(ABC):
    """Builds and publishes container images."""

    @abstractmethod
    def build(
        self,
        spec: ApplicationSpec,
        build_context: Path,
        labels: dict[str, str] | None = None,
    ) -> BuildResult:
        """Build an image for ``spec`` from ``build_context``.

        Raises:
            BuildFailedError: If the build fails.
        """

    @abstractmethod
    def publish(self, result: BuildResult) -> str | None:
        """Push a built image to the registry.

        Returns:
            The pushed digest when the registry reports one.

        Raises:
            PublishFailedError: If the push fails.
        """


class Reconciler(ABC):
    """Makes the orchestrator converge on the manifest document."""

    @abstractmethod
    def apply(self, manifest_path: Path) -> None:
        """Hand the whole manifest to the orchestrator.

        Raises:
            ReconcileFailedError: If the orchestrator rejects the manifest.
        """

    @abstractmethod
    def teardown(self) -> None:
        """Tear down the deployed stack on shutdown.

        Raises:
            DeploymentError: If any teardown step fails.
        """
