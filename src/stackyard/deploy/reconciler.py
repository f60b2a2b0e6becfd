"""Swarm stack reconciler.

Hands the whole manifest document to ``docker stack deploy``; the
orchestrator converges the running services on it. Tears the stack down
again when the control plane shuts down.
"""

from __future__ import annotations

import subprocess  # nosec B404
from pathlib import Path
from typing import TYPE_CHECKING

from docker.errors import DockerException, NotFound

from stackyard.deploy.base import Reconciler
from stackyard.deploy.builder import connect_docker
from stackyard.lib.errors import DeploymentError, ReconcileFailedError
from stackyard.lib.logging_config import get_logger

if TYPE_CHECKING:
    from docker import DockerClient

logger = get_logger(__name__)


class StackReconciler(Reconciler):
    """Reconciler backed by the ``docker stack`` CLI.

    Example:
        >>> reconciler = StackReconciler("stackyard")
        >>> reconciler.apply(Path("stack.yml"))
    """

    def __init__(
        self,
        stack_name: str,
        *,
        network: str | None = None,
        control_plane_container: str | None = None,
        timeout: float | None = 120.0,
        client: DockerClient | None = None,
    ) -> None:
        """Initialize the reconciler.

        Args:
            stack_name: Name of the swarm stack owning every service
            network: Overlay network the control plane container is attached to
            control_plane_container: Container to detach from ``network`` on teardown
            timeout: Seconds before a ``docker stack`` call is aborted
            client: Docker client to use instead of connecting from env
        """
        self.stack_name = stack_name
        self.network = network
        self.control_plane_container = control_plane_container
        self.timeout = timeout
        self._client = client

    @property
    def client(self) -> DockerClient:
        """Docker client, connected on first use."""
        if self._client is None:
            self._client = connect_docker("teardown")
        return self._client

    def _run_stack(self, *args: str) -> subprocess.CompletedProcess[str]:
        command = ["docker", "stack", *args]
        logger.debug(f"Running: {' '.join(command)}")
        return subprocess.run(  # noqa: S603  # nosec B603 B607
            command,
            capture_output=True,
            text=True,
            timeout=self.timeout,
        )

    def apply(self, manifest_path: Path) -> None:
        """Deploy the manifest as the stack, pruning undeclared services.

        Raises:
            ReconcileFailedError: If the orchestrator rejects the manifest
        """
        if not Path(manifest_path).is_file():
            raise ReconcileFailedError(f"manifest not found: {manifest_path}")

        logger.info(f"Reconciling stack '{self.stack_name}' from {manifest_path}")
        try:
            result = self._run_stack(
                "deploy",
                "--compose-file",
                str(manifest_path),
                "--prune",
                "--resolve-image",
                "always",
                self.stack_name,
            )
        except FileNotFoundError as e:
            raise ReconcileFailedError("docker executable not found on PATH") from e
        except subprocess.TimeoutExpired as e:
            raise ReconcileFailedError(
                f"stack deploy timed out after {self.timeout}s"
            ) from e

        if result.returncode != 0:
            reason = result.stderr.strip() or f"docker exited with {result.returncode}"
            raise ReconcileFailedError(reason)
        logger.debug(result.stdout.strip())

    def teardown(self) -> None:
        """Remove the stack and detach the control plane from its network.

        Every step is attempted even if an earlier one fails.

        Raises:
            DeploymentError: Summarizing every step that failed
        """
        failures: list[str] = []

        logger.info(f"Removing stack '{self.stack_name}'")
        try:
            result = self._run_stack("rm", self.stack_name)
            if result.returncode != 0:
                failures.append(f"stack rm: {result.stderr.strip()}")
        except (FileNotFoundError, subprocess.TimeoutExpired) as e:
            failures.append(f"stack rm: {e}")

        if self.network and self.control_plane_container:
            logger.info(
                f"Detaching {self.control_plane_container} from network {self.network}"
            )
            try:
                network = self.client.networks.get(self.network)
                network.disconnect(self.control_plane_container, force=True)
            except NotFound:
                logger.debug(f"Network {self.network} already gone")
            except DeploymentError as e:
                failures.append(f"network disconnect: {e.message}")
            except DockerException as e:
                failures.append(f"network disconnect: {e}")

        if failures:
            raise DeploymentError(operation="teardown", message="; ".join(failures))
