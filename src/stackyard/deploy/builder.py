"""Container image builder for Stackyard applications.

This module builds application images with the Docker SDK and pushes them
to the platform registry.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any

import docker
from docker.errors import BuildError, DockerException

from stackyard.deploy.base import BuildResult, ImageBuilder
from stackyard.lib.errors import (
    BuildFailedError,
    DockerNotAvailableError,
    PublishFailedError,
)
from stackyard.lib.logging_config import get_logger
from stackyard.models.app import LABEL_PREFIX, ApplicationSpec
from stackyard.models.config import RegistryConfig

if TYPE_CHECKING:
    from docker import DockerClient

logger = get_logger(__name__)


def connect_docker(operation: str) -> DockerClient:
    """Connect to the Docker daemon using the environment configuration.

    Raises:
        DockerNotAvailableError: If the daemon cannot be reached
    """
    try:
        return docker.from_env()  # type: ignore[attr-defined]
    except DockerException as e:
        raise DockerNotAvailableError(operation=operation, original_error=e) from e


def get_image_labels(spec: ApplicationSpec, image: str) -> dict[str, str]:
    """Generate OCI and ``com.stackyard.*`` image labels for an application.

    Example:
        >>> spec = ApplicationSpec(name="demo", sourceURL="https://x/demo.git")
        >>> get_image_labels(spec, "localhost:5000/demo:latest")["com.stackyard.name"]
        'demo'
    """
    labels = {
        "org.opencontainers.image.title": spec.name,
        "org.opencontainers.image.source": spec.source_url,
        "org.opencontainers.image.created": datetime.now(timezone.utc).isoformat(),
        f"{LABEL_PREFIX}.managed": "true",
    }
    labels.update(spec.to_labels(image=image))
    return labels


def _collect_log_lines(entries: Any) -> list[str]:
    log_lines: list[str] = []
    for log_entry in entries:
        # Docker SDK returns dict[str, Any] for log entries
        if isinstance(log_entry, dict):
            if "stream" in log_entry:
                stream_val = log_entry["stream"]
                if isinstance(stream_val, str):
                    log_lines.append(stream_val.rstrip("\n"))
            elif "error" in log_entry:
                log_lines.append(f"ERROR: {log_entry['error']}")
    return log_lines


class ContainerBuilder(ImageBuilder):
    """Builder for Stackyard application images.

    Connects to the Docker daemon lazily, on the first build or push, so
    the control plane can start while Docker is still coming up.

    Example:
        >>> builder = ContainerBuilder(RegistryConfig(url="localhost:5000"))
        >>> result = builder.build(spec, Path("/tmp/.demo-01/source"))
        >>> print(result.full_name)
        'localhost:5000/demo:latest'
        >>> builder.publish(result)
    """

    def __init__(
        self,
        registry: RegistryConfig | None = None,
        client: DockerClient | None = None,
        pull: bool = True,
    ) -> None:
        """Initialize the container builder.

        Args:
            registry: Registry the images are tagged for and pushed to
            client: Docker client to use instead of connecting from env
            pull: Always pull the base image when building
        """
        self.registry = registry or RegistryConfig()
        self.pull = pull
        self._client = client

    @property
    def client(self) -> DockerClient:
        """Docker client, connected on first use."""
        if self._client is None:
            self._client = connect_docker("build")
        return self._client

    def build(
        self,
        spec: ApplicationSpec,
        build_context: Path,
        labels: dict[str, str] | None = None,
        **build_kwargs: Any,
    ) -> BuildResult:
        """Build the image for ``spec`` from the specified context.

        Args:
            spec: Application being built
            build_context: Path to the build context directory
            labels: Image labels; derived from ``spec`` when omitted
            **build_kwargs: Additional arguments passed to Docker build

        Returns:
            BuildResult with image details and build logs

        Raises:
            BuildFailedError: If the build context is missing or the build fails
            DockerNotAvailableError: If the Docker daemon is not available
        """
        context_path = Path(build_context)
        if not context_path.is_dir():
            raise BuildFailedError(f"Build context not found: {build_context}")

        image_name = spec.image_name(self.registry.url)
        tag = self.registry.tag
        full_tag = f"{image_name}:{tag}"
        logger.info(f"Building {full_tag} from {context_path}")

        try:
            image, build_logs = self.client.images.build(
                path=str(context_path),
                tag=full_tag,
                labels=labels or get_image_labels(spec, full_tag),
                rm=True,  # Remove intermediate containers
                pull=self.pull,
                **build_kwargs,
            )
        except BuildError as e:
            raise BuildFailedError(f"Docker build failed: {e.msg}") from e
        except DockerException as e:
            raise BuildFailedError(f"Docker error during build: {e}") from e

        log_lines = _collect_log_lines(build_logs)
        logger.debug(f"Built {full_tag} ({len(log_lines)} log lines)")
        return BuildResult(
            image_id=image.id or "",
            image_name=image_name,
            tag=tag,
            full_name=full_tag,
            log_lines=log_lines,
        )

    def publish(self, result: BuildResult) -> str | None:
        """Push a built image to the registry.

        Args:
            result: Build result naming the image to push

        Returns:
            The digest reported by the registry, if any

        Raises:
            PublishFailedError: If the registry rejects the push
            DockerNotAvailableError: If the Docker daemon is not available
        """
        logger.info(f"Pushing {result.full_name}")
        digest: str | None = None
        try:
            for entry in self.client.images.push(
                result.image_name, tag=result.tag, stream=True, decode=True
            ):
                if not isinstance(entry, dict):
                    continue
                if "error" in entry:
                    raise PublishFailedError(
                        f"Registry rejected {result.full_name}: {entry['error']}"
                    )
                aux = entry.get("aux")
                if isinstance(aux, dict) and aux.get("Digest"):
                    digest = str(aux["Digest"])
        except DockerException as e:
            raise PublishFailedError(f"Docker error during push: {e}") from e

        logger.debug(f"Pushed {result.full_name} (digest={digest})")
        return digest
