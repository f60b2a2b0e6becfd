"""Pipeline controller: the deployment state machine.

Every accepted request becomes a ``DeploymentJob`` running as its own
asyncio task::

    Received -> Validating -> FetchingSource -> PreparingBuildSpec
      -> Building -> Publishing -> Resolving(create|update)
      -> MutatingManifest (create only) -> Reconciling -> Completed

Each phase emits an ``in_progress`` event on entry and a ``success`` or
``error`` event on exit. A job ends with exactly one final event: a
``terminal`` Completed event carrying the deployment summary, or a Failed
event carrying the reason. Jobs for different applications run
concurrently; Resolving through Reconciling is serialized per application
name, and so are scale and remove operations.
"""

from __future__ import annotations

import asyncio
import shutil
import time
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import Any, Literal

from ulid import ULID

from stackyard.deploy.base import ImageBuilder, Reconciler, SourceFetcher
from stackyard.deploy.builder import get_image_labels
from stackyard.deploy.dockerfile import resolve_preset, write_build_files
from stackyard.events.bus import StatusEventBus
from stackyard.lib.errors import (
    CleanupWarning,
    DeploymentError,
    ShutdownInProgressError,
    StackyardError,
    ValidationError,
)
from stackyard.lib.logging_config import get_logger
from stackyard.lib.metrics import PlatformMetrics
from stackyard.manifest.store import ManifestStore
from stackyard.models.app import (
    APP_NAME_PATTERN,
    ENV_KEY_PATTERN,
    LABEL_PREFIX,
    ApplicationSpec,
)
from stackyard.models.config import RegistryConfig
from stackyard.models.events import DeploymentPhase, Severity, StatusEvent

logger = get_logger(__name__)

Phase = DeploymentPhase


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class PhaseReport:
    """Exit message and payload a phase body hands back to the controller."""

    message: str
    payload: dict[str, Any] | None = None


@dataclass
class DeploymentJob:
    """One execution of the pipeline for one ApplicationSpec."""

    spec: ApplicationSpec
    job_id: str = field(default_factory=lambda: str(ULID()))
    phase: DeploymentPhase = DeploymentPhase.RECEIVED
    accepted_at: datetime = field(default_factory=_utcnow)
    finished_at: datetime | None = None
    workspace: Path | None = None
    mode: Literal["create", "update"] | None = None
    created_at: str | None = None
    image: str | None = None
    digest: str | None = None
    error: BaseException | None = None

    @property
    def app_name(self) -> str:
        """Name of the application being deployed."""
        return self.spec.name

    @property
    def succeeded(self) -> bool:
        """Whether the job reached Completed."""
        return self.phase == DeploymentPhase.COMPLETED


class JobHandle:
    """Reference to a running job returned by ``PipelineController.submit``."""

    def __init__(self, job: DeploymentJob, task: asyncio.Task[DeploymentJob]) -> None:
        self.job = job
        self.task = task

    @property
    def job_id(self) -> str:
        return self.job.job_id

    @property
    def app_name(self) -> str:
        return self.job.app_name

    def done(self) -> bool:
        """Whether the job has finished (successfully or not)."""
        return self.task.done()

    async def wait(self) -> DeploymentJob:
        """Wait for the job to finish and return it.

        Cancelling the waiter does not cancel the job.
        """
        try:
            await asyncio.shield(self.task)
        except asyncio.CancelledError:
            if not self.task.cancelled():
                raise
        return self.job


def check_request(spec: ApplicationSpec) -> None:
    """Synchronous request checks run before a job is created.

    Raises:
        ValidationError: If the name or source URL is missing or malformed
    """
    if not spec.name:
        raise ValidationError("name", "must not be empty")
    if not APP_NAME_PATTERN.match(spec.name):
        raise ValidationError(
            "name",
            f"'{spec.name}' is not a valid DNS label "
            "(lowercase letters, digits and '-', at most 63 characters)",
        )
    if not spec.source_url:
        raise ValidationError("sourceURL", "must not be empty")


def validate_spec(spec: ApplicationSpec) -> None:
    """Full spec validation run in the Validating phase.

    Raises:
        ValidationError: If the kind, environment or workdir is invalid
    """
    resolve_preset(spec.kind)
    for key in spec.env:
        if not ENV_KEY_PATTERN.match(key):
            raise ValidationError("env", f"invalid environment variable name: {key!r}")
    if spec.workdir:
        workdir = PurePosixPath(spec.workdir)
        if workdir.is_absolute() or ".." in workdir.parts:
            raise ValidationError(
                "workdir",
                f"must be a relative path inside the repository: {spec.workdir!r}",
            )


class PipelineController:
    """Drives DeploymentJobs through the pipeline and owns the per-name locks.

    Example:
        >>> controller = PipelineController(
        ...     store, bus,
        ...     fetcher=GitSourceFetcher(),
        ...     builder=ContainerBuilder(registry),
        ...     reconciler=StackReconciler("stackyard"),
        ...     workspace_root=Path("~/.cache/stackyard").expanduser(),
        ... )
        >>> handle = controller.submit(spec)
        >>> job = await handle.wait()
    """

    def __init__(
        self,
        store: ManifestStore,
        bus: StatusEventBus,
        *,
        fetcher: SourceFetcher,
        builder: ImageBuilder,
        reconciler: Reconciler,
        workspace_root: Path,
        registry: RegistryConfig | None = None,
        app_port: int = 3000,
        metrics: PlatformMetrics | None = None,
    ) -> None:
        """Initialize the controller.

        Args:
            store: Manifest store holding desired state
            bus: Event bus receiving progress events
            fetcher: Source fetcher collaborator
            builder: Image builder collaborator
            reconciler: Orchestrator reconciler collaborator
            workspace_root: Directory under which job workspaces are created
            registry: Registry the images are published to
            app_port: Port applications listen on inside their container
            metrics: Optional metrics sink
        """
        self.store = store
        self.bus = bus
        self.fetcher = fetcher
        self.builder = builder
        self.reconciler = reconciler
        self.workspace_root = Path(workspace_root)
        self.registry = registry or store.registry
        self.app_port = app_port
        self.metrics = metrics
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}
        self._jobs: dict[str, list[JobHandle]] = {}
        self._accepting = True

    # ------------------------------------------------------------------
    # Job registry
    # ------------------------------------------------------------------

    @property
    def accepting(self) -> bool:
        """Whether new jobs are accepted (False once shutdown started)."""
        return self._accepting

    def active_jobs(self) -> list[JobHandle]:
        """Return every job that has not finished yet."""
        return [handle for handles in self._jobs.values() for handle in handles]

    def jobs_for(self, name: str) -> list[JobHandle]:
        """Return the running jobs of one application."""
        return list(self._jobs.get(name, []))

    def _forget(self, handle: JobHandle) -> None:
        handles = self._jobs.get(handle.app_name, [])
        if handle in handles:
            handles.remove(handle)
        if not handles:
            self._jobs.pop(handle.app_name, None)
        if self.metrics is not None:
            self.metrics.active_jobs.dec()

    @asynccontextmanager
    async def _serialized(self, name: str) -> AsyncIterator[None]:
        """Hold the per-name lock; the lock is dropped once nobody uses it."""
        lock = self._locks.get(name)
        if lock is None:
            lock = self._locks[name] = asyncio.Lock()
        self._lock_users[name] = self._lock_users.get(name, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[name] -= 1
            if not self._lock_users[name]:
                del self._lock_users[name]
                del self._locks[name]

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def _emit(
        self,
        app_name: str,
        phase: DeploymentPhase,
        severity: Severity,
        message: str,
        payload: dict[str, Any] | None = None,
        job_id: str | None = None,
    ) -> None:
        self.bus.emit(
            StatusEvent(
                app_name=app_name,
                phase=phase,
                severity=severity,
                message=message,
                payload=payload,
                job_id=job_id,
            )
        )

    @asynccontextmanager
    async def _phase(
        self,
        app_name: str,
        phase: DeploymentPhase,
        message: str,
        job: DeploymentJob | None = None,
    ) -> AsyncIterator[PhaseReport]:
        """Wrap one phase with its entry and exit events."""
        job_id = job.job_id if job is not None else None
        if job is not None:
            job.phase = phase
        self._emit(app_name, phase, Severity.IN_PROGRESS, message, job_id=job_id)
        report = PhaseReport(message=f"{message}: done")
        started = time.monotonic()
        try:
            yield report
        except Exception as exc:
            self._emit(
                app_name,
                phase,
                Severity.ERROR,
                _describe(exc),
                payload={"error": type(exc).__name__},
                job_id=job_id,
            )
            raise
        finally:
            if self.metrics is not None:
                self.metrics.phase_duration.labels(phase=phase.value).observe(
                    time.monotonic() - started
                )
        self._emit(
            app_name, phase, Severity.SUCCESS, report.message, report.payload, job_id
        )

    # ------------------------------------------------------------------
    # Deployments
    # ------------------------------------------------------------------

    def submit(self, spec: ApplicationSpec) -> JobHandle:
        """Validate a request and start its job in the background.

        Must be called from a running event loop. A rejected request emits
        one Failed event and creates no job and no workspace.

        Raises:
            ShutdownInProgressError: If shutdown has started
            ValidationError: If the request is malformed
        """
        if not self._accepting:
            raise ShutdownInProgressError()
        try:
            check_request(spec)
        except ValidationError as exc:
            self._emit(
                spec.name,
                Phase.FAILED,
                Severity.ERROR,
                f"Invalid deployment request: {exc.field} {exc.message}",
                payload={"error": "ValidationError", "field": exc.field},
            )
            self._count_deployment("rejected")
            logger.warning(f"Rejected deployment request: {exc}")
            raise

        job = DeploymentJob(spec=spec)
        task = asyncio.get_running_loop().create_task(
            self._run(job), name=f"deploy:{spec.name}:{job.job_id}"
        )
        handle = JobHandle(job, task)
        self._jobs.setdefault(spec.name, []).append(handle)
        if self.metrics is not None:
            self.metrics.active_jobs.inc()
        task.add_done_callback(lambda _task: self._forget(handle))
        logger.info(f"Accepted deployment of '{spec.name}' as job {job.job_id}")
        return handle

    async def _run(self, job: DeploymentJob) -> DeploymentJob:
        spec = job.spec
        name = spec.name
        started = time.monotonic()
        outcome = "failed"
        try:
            async with self._phase(
                name, Phase.RECEIVED, f"Deployment of '{name}' received", job
            ) as report:
                report.message = f"Accepted as job {job.job_id}"

            async with self._phase(
                name, Phase.VALIDATING, "Validating application spec", job
            ) as report:
                validate_spec(spec)
                # Surfaces an unreadable or corrupt manifest before any build work
                await asyncio.to_thread(self.store.names)
                report.message = "Application spec is valid"

            async with self._phase(
                name,
                Phase.FETCHING_SOURCE,
                f"Fetching source from {spec.source_url}",
                job,
            ) as report:
                job.workspace = self.workspace_root / f".{name}-{job.job_id.lower()}"
                source_dir = job.workspace / "source"
                await asyncio.to_thread(job.workspace.mkdir, parents=True, exist_ok=True)
                await asyncio.to_thread(self.fetcher.fetch, spec.source_url, source_dir)
                report.message = "Source fetched"

            image_ref = spec.image_ref(self.registry.url, self.registry.tag)
            async with self._phase(
                name, Phase.PREPARING_BUILD_SPEC, "Preparing build context", job
            ) as report:
                context_dir = _context_dir(source_dir, spec)
                labels = get_image_labels(spec, image_ref)
                generated = await asyncio.to_thread(
                    write_build_files, spec, context_dir, port=self.app_port, labels=labels
                )
                report.message = (
                    f"Generated {spec.kind.value} Dockerfile"
                    if generated
                    else "Using the repository's Dockerfile"
                )
                report.payload = {"generatedDockerfile": generated}

            async with self._phase(
                name, Phase.BUILDING, f"Building image {image_ref}", job
            ) as report:
                result = await asyncio.to_thread(
                    self.builder.build, spec, context_dir, labels
                )
                job.image = result.full_name
                report.message = f"Built {result.full_name}"

            async with self._phase(
                name, Phase.PUBLISHING, f"Pushing {result.full_name}", job
            ) as report:
                job.digest = await asyncio.to_thread(self.builder.publish, result)
                report.message = f"Pushed {result.full_name}"

            async with self._serialized(name):
                async with self._phase(
                    name, Phase.RESOLVING, f"Looking up '{name}' in the manifest", job
                ) as report:
                    exists = await asyncio.to_thread(self.store.exists, name)
                    job.mode = "update" if exists else "create"
                    if exists:
                        block = await asyncio.to_thread(self.store.get, name)
                        job.created_at = block.labels.get(f"{LABEL_PREFIX}.created_at")
                    report.message = (
                        f"'{name}' is already declared; updating"
                        if exists
                        else f"'{name}' is new; creating"
                    )
                    report.payload = {"mode": job.mode}

                if job.mode == "create":
                    async with self._phase(
                        name,
                        Phase.MUTATING_MANIFEST,
                        f"Declaring '{name}' in the manifest",
                        job,
                    ) as report:
                        await self._mutate("add", self.store.add, spec, 1, job.image)
                        report.message = f"Declared '{name}'"

                async with self._phase(
                    name, Phase.RECONCILING, "Reconciling stack", job
                ) as report:
                    await asyncio.to_thread(self.reconciler.apply, self.store.path)
                    report.message = "Stack reconciled"

            job.phase = Phase.COMPLETED
            job.finished_at = _utcnow()
            self._emit(
                name,
                Phase.COMPLETED,
                Severity.TERMINAL,
                f"Application '{name}' deployed at {spec.domain}",
                payload=self._summary(job),
                job_id=job.job_id,
            )
            outcome = job.mode or "create"
            logger.info(f"Job {job.job_id} deployed '{name}' ({job.mode})")
            return job
        except asyncio.CancelledError as exc:
            outcome = "abandoned"
            self._fail(job, "Deployment abandoned: control plane is shutting down", exc)
            raise
        except StackyardError as exc:
            self._fail(job, str(exc), exc)
            return job
        except Exception as exc:
            logger.exception(f"Job {job.job_id} crashed")
            self._fail(job, f"Unexpected error: {exc}", exc)
            return job
        finally:
            self._count_deployment(outcome, time.monotonic() - started)
            if job.workspace is not None:
                await _remove_workspace(job.workspace)

    def _fail(self, job: DeploymentJob, message: str, exc: BaseException) -> None:
        failed_in = job.phase
        job.phase = Phase.FAILED
        job.error = exc
        job.finished_at = _utcnow()
        self._emit(
            job.app_name,
            Phase.FAILED,
            Severity.ERROR,
            message,
            payload={"error": type(exc).__name__, "phase": failed_in.value},
            job_id=job.job_id,
        )
        logger.error(
            f"Job {job.job_id} for '{job.app_name}' failed in {failed_in.value}: "
            f"{message}"
        )

    def _summary(self, job: DeploymentJob) -> dict[str, Any]:
        return {
            "appName": job.app_name,
            "domain": job.spec.domain,
            "createdAt": job.created_at or job.spec.created_at.isoformat(),
            "status": "deployed",
            "image": job.image,
            "digest": job.digest,
            "mode": job.mode,
            "jobId": job.job_id,
        }

    def _count_deployment(self, outcome: str, duration: float | None = None) -> None:
        if self.metrics is None:
            return
        self.metrics.deployments.labels(outcome=outcome).inc()
        if duration is not None:
            self.metrics.deployment_duration.observe(duration)

    async def _mutate(
        self, operation: str, func: Callable[..., None], *args: Any
    ) -> None:
        result = "ok"
        try:
            await asyncio.to_thread(func, *args)
        except Exception:
            result = "error"
            raise
        finally:
            if self.metrics is not None:
                self.metrics.manifest_operations.labels(
                    operation=operation, result=result
                ).inc()

    # ------------------------------------------------------------------
    # Desired-state operations on deployed applications
    # ------------------------------------------------------------------

    async def scale(self, name: str, replicas: int) -> None:
        """Set the replica count of ``name`` and reconcile.

        ``scale(name, 0)`` stops an application, ``scale(name, 1)`` starts it.

        Raises:
            NotFoundError: If ``name`` is not declared
            ValidationError: If ``replicas`` is negative
            ReconcileFailedError: If the orchestrator rejects the manifest
        """
        await self._operate(
            name,
            "scale",
            f"Scaling '{name}' to {replicas} replica(s)",
            self.store.set_replicas,
            name,
            replicas,
            payload={"replicas": replicas},
        )

    async def remove(self, name: str) -> None:
        """Remove ``name`` from the manifest and reconcile.

        Raises:
            NotFoundError: If ``name`` is not declared
            ReconcileFailedError: If the orchestrator rejects the manifest
        """
        await self._operate(
            name, "remove", f"Removing '{name}'", self.store.remove, name
        )

    async def _operate(
        self,
        name: str,
        operation: str,
        message: str,
        mutate: Callable[..., None],
        *args: Any,
        payload: dict[str, Any] | None = None,
    ) -> None:
        if not self._accepting:
            raise ShutdownInProgressError()
        async with self._serialized(name):
            try:
                async with self._phase(name, Phase.MUTATING_MANIFEST, message) as report:
                    await self._mutate(operation, mutate, *args)
                    report.message = "Manifest updated"
                async with self._phase(
                    name, Phase.RECONCILING, "Reconciling stack"
                ) as report:
                    await asyncio.to_thread(self.reconciler.apply, self.store.path)
                    report.message = "Stack reconciled"
            except StackyardError as exc:
                self._emit(
                    name,
                    Phase.FAILED,
                    Severity.ERROR,
                    str(exc),
                    payload={"error": type(exc).__name__, "operation": operation},
                )
                raise
        self._emit(
            name,
            Phase.COMPLETED,
            Severity.TERMINAL,
            f"{operation.capitalize()} of '{name}' completed",
            payload={"operation": operation, **(payload or {})},
        )
        logger.info(f"{operation.capitalize()} of '{name}' completed")

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def shutdown(self, grace_seconds: float = 30.0) -> None:
        """Stop accepting jobs and wait for in-flight ones.

        Jobs still running after ``grace_seconds`` are cancelled; each emits
        a Failed event and has its workspace removed.
        """
        self._accepting = False
        tasks = [handle.task for handle in self.active_jobs() if not handle.done()]
        if not tasks:
            return

        logger.info(f"Waiting up to {grace_seconds}s for {len(tasks)} running job(s)")
        _done, pending = await asyncio.wait(tasks, timeout=grace_seconds)
        if pending:
            logger.warning(
                f"Abandoning {len(pending)} job(s) still running after {grace_seconds}s"
            )
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

    async def teardown(self, timeout: float) -> None:
        """Tear the stack down, giving up after ``timeout`` seconds."""
        try:
            await asyncio.wait_for(asyncio.to_thread(self.reconciler.teardown), timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Stack teardown did not finish within {timeout}s")
        except DeploymentError as exc:
            logger.error(f"Stack teardown incomplete: {exc.message}")
        else:
            logger.info("Stack torn down")


def _describe(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__


def _context_dir(source_dir: Path, spec: ApplicationSpec) -> Path:
    if not spec.workdir:
        return source_dir
    context = source_dir / spec.workdir
    if not context.is_dir():
        raise ValidationError(
            "workdir", f"'{spec.workdir}' does not exist in the repository"
        )
    return context


async def _remove_workspace(path: Path) -> None:
    """Remove a workspace off the event loop, finishing even if cancelled."""
    cleanup = asyncio.ensure_future(asyncio.to_thread(_cleanup_workspace, path))
    try:
        await asyncio.shield(cleanup)
    except asyncio.CancelledError:
        await cleanup
        raise


def _cleanup_workspace(path: Path) -> None:
    """Remove a job workspace; failures are logged and never raised."""
    try:
        shutil.rmtree(path)
    except FileNotFoundError:
        return
    except OSError as exc:
        logger.warning(str(CleanupWarning(str(path), str(exc))))
        return
    logger.debug(f"Removed workspace {path}")
