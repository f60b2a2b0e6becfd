"""Application catalog: declared applications joined with their live state."""

from __future__ import annotations

from typing import TYPE_CHECKING

from docker.errors import DockerException

from stackyard.deploy.builder import connect_docker
from stackyard.lib.errors import DockerNotAvailableError
from stackyard.lib.logging_config import get_logger
from stackyard.manifest.store import ManifestStore
from stackyard.models.app import LABEL_PREFIX, AppInfo
from stackyard.models.manifest import ServiceBlock

if TYPE_CHECKING:
    from docker import DockerClient

logger = get_logger(__name__)


class AppCatalog:
    """Lists applications from the manifest, enriched with swarm task state.

    The manifest is authoritative for which applications exist; the
    orchestrator only contributes running replica counts. When Docker
    cannot be reached every application is reported with status
    ``unknown``.
    """

    def __init__(self, store: ManifestStore, client: DockerClient | None = None) -> None:
        self.store = store
        self._client = client

    @property
    def client(self) -> DockerClient:
        """Docker client, connected on first use."""
        if self._client is None:
            self._client = connect_docker("list")
        return self._client

    def list_apps(self) -> list[AppInfo]:
        """Return every declared application, newest first."""
        blocks = self.store.list_blocks()
        live = self._live_services()
        apps = [self._describe(block, live) for block in blocks]
        apps.sort(key=lambda app: app.created_at or "", reverse=True)
        return apps

    def _live_services(self) -> dict[str, tuple[str, int]] | None:
        try:
            services = self.client.services.list(
                filters={"label": f"{LABEL_PREFIX}.name"}
            )
            live: dict[str, tuple[str, int]] = {}
            for service in services:
                labels = service.attrs.get("Spec", {}).get("Labels") or {}
                name = labels.get(f"{LABEL_PREFIX}.name")
                if not name:
                    continue
                tasks = service.tasks(filters={"desired-state": "running"})
                running = sum(
                    1 for task in tasks if task.get("Status", {}).get("State") == "running"
                )
                live[name] = (service.id, running)
            return live
        except (DockerNotAvailableError, DockerException) as e:
            logger.warning(f"Live service state unavailable: {e}")
            return None

    @staticmethod
    def _describe(
        block: ServiceBlock, live: dict[str, tuple[str, int]] | None
    ) -> AppInfo:
        labels = block.labels
        # compose defaults to one replica when the field is omitted
        replicas = block.replicas if block.replicas is not None else 1
        service_id: str | None = None
        running = 0
        if live is None:
            status = "unknown"
        else:
            service_id, running = live.get(block.name, (None, 0))
            status = derive_status(replicas, running, deployed=service_id is not None)

        return AppInfo(
            app_name=block.name,
            kind=labels.get(f"{LABEL_PREFIX}.kind"),
            source_url=labels.get(f"{LABEL_PREFIX}.source_url"),
            domain=labels.get(f"{LABEL_PREFIX}.domain"),
            created_at=labels.get(f"{LABEL_PREFIX}.created_at"),
            image=block.image,
            replicas=replicas,
            running=running,
            status=status,
            service_id=service_id,
        )


def derive_status(replicas: int, running: int, *, deployed: bool = True) -> str:
    """Summarize desired and running replica counts.

    Example:
        >>> derive_status(1, 1)
        'running'
        >>> derive_status(0, 0)
        'stopped'
    """
    if replicas == 0:
        return "stopped"
    if not deployed or running == 0:
        return "pending"
    if running < replicas:
        return "degraded"
    return "running"
