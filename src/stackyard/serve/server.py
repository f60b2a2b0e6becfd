"""Control-plane HTTP server.

Provides the FastAPI application factory and server lifecycle management
for the deployment control plane: deployment submission, start/stop/remove
operations, the application listing, health, metrics and the live status
event stream over WebSocket.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from http import HTTPStatus

from fastapi import FastAPI, Request, Response, WebSocket
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.websockets import WebSocketDisconnect

from stackyard.deploy.builder import ContainerBuilder
from stackyard.deploy.catalog import AppCatalog
from stackyard.deploy.fetcher import GitSourceFetcher
from stackyard.deploy.pipeline import PipelineController
from stackyard.deploy.reconciler import StackReconciler
from stackyard.events.bus import StatusEventBus
from stackyard.lib.errors import (
    AlreadyExistsError,
    DeploymentError,
    DockerNotAvailableError,
    NotFoundError,
    ShutdownInProgressError,
    StackyardError,
    SubscriptionClosedError,
    ValidationError,
)
from stackyard.lib.logging_config import get_logger
from stackyard.lib.metrics import PlatformMetrics
from stackyard.manifest.store import ManifestStore
from stackyard.models.config import PlatformConfig
from stackyard.serve.middleware import (
    ErrorHandlingMiddleware,
    LoggingMiddleware,
    problem_response,
)
from stackyard.serve.models import (
    AcceptedResponse,
    AppListResponse,
    AppNameRequest,
    CreateAppRequest,
    HealthResponse,
    OperationResponse,
    ServerState,
)

logger = get_logger(__name__)


def status_for(exc: StackyardError) -> int:
    """Map a Stackyard error onto an HTTP status code."""
    if isinstance(exc, ValidationError):
        return 400
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, AlreadyExistsError):
        return 409
    if isinstance(exc, (ShutdownInProgressError, DockerNotAvailableError)):
        return 503
    if isinstance(exc, DeploymentError):
        return 502
    return 500


async def _wait_for_disconnect(websocket: WebSocket) -> None:
    """Consume client frames until the client goes away."""
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return


class ControlPlaneServer:
    """HTTP server exposing the deployment control plane.

    Attributes:
        config: The platform configuration.
        store: The manifest store.
        bus: The status event bus.
        controller: The pipeline controller.
        catalog: The application catalog.
        metrics: Prometheus metrics.
        state: The current server state.
    """

    def __init__(
        self,
        config: PlatformConfig,
        *,
        controller: PipelineController | None = None,
        catalog: AppCatalog | None = None,
        metrics: PlatformMetrics | None = None,
        debug: bool = False,
    ) -> None:
        """Initialize the control-plane server.

        Args:
            config: The platform configuration.
            controller: Pre-built controller (defaults to one wired to Docker).
            catalog: Pre-built application catalog.
            metrics: Metrics sink (a fresh registry by default).
            debug: Include exception details in 500 responses.
        """
        self.config = config
        self.debug = debug
        self.metrics = metrics or PlatformMetrics()

        if config.server.host == "0.0.0.0":  # noqa: S104
            logger.warning(
                "Server binding to 0.0.0.0 exposes it to all network interfaces. "
                "Use 127.0.0.1 for local-only access."
            )

        if controller is None:
            store = ManifestStore(
                config.manifest_path,
                registry=config.registry,
                resources=config.resources,
                routing=config.routing,
            )
            bus = StatusEventBus(
                config.event_buffer_size,
                on_emit=self.metrics.on_emit,
                on_lag=self.metrics.on_lag,
            )
            controller = PipelineController(
                store,
                bus,
                fetcher=GitSourceFetcher(),
                builder=ContainerBuilder(config.registry),
                reconciler=StackReconciler(
                    config.stack_name,
                    network=config.routing.network,
                    control_plane_container=config.control_plane_container,
                ),
                workspace_root=config.workspace_root,
                registry=config.registry,
                app_port=config.routing.app_port,
                metrics=self.metrics,
            )
        self.controller = controller
        self.store = controller.store
        self.bus = controller.bus
        self.catalog = catalog or AppCatalog(self.store)
        self.state = ServerState.INITIALIZING
        self._app: FastAPI | None = None
        self._start_time: datetime | None = None

    @property
    def is_ready(self) -> bool:
        """Check if the server is ready to accept requests."""
        return self.state in (ServerState.READY, ServerState.RUNNING)

    @property
    def uptime_seconds(self) -> float:
        """Return server uptime in seconds."""
        if self._start_time is None:
            return 0.0
        delta = datetime.now(timezone.utc) - self._start_time
        return delta.total_seconds()

    def create_app(self) -> FastAPI:
        """Create and configure the FastAPI application.

        Returns:
            Configured FastAPI application instance.
        """
        app = FastAPI(
            title="Stackyard Control Plane",
            description="Deploys git repositories as services on a swarm stack",
            version="0.1.0",
        )

        app.add_middleware(
            CORSMiddleware,
            allow_origins=self.config.server.cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )
        # Starlette executes middleware in reverse order of addition.
        # Request flow:  Logging -> ErrorHandling -> CORS -> Handler
        app.add_middleware(ErrorHandlingMiddleware, debug=self.debug)
        app.add_middleware(LoggingMiddleware, debug=self.debug)

        self._register_error_handlers(app)
        self._register_app_endpoints(app)
        self._register_event_stream(app)
        self._register_health_endpoints(app)

        self._app = app
        self.state = ServerState.READY
        logger.info(f"FastAPI app created for stack '{self.config.stack_name}'")
        return app

    def _register_error_handlers(self, app: FastAPI) -> None:
        @app.exception_handler(StackyardError)
        async def stackyard_error(request: Request, exc: StackyardError) -> JSONResponse:
            status = status_for(exc)
            if status >= 500:
                logger.error(f"{request.method} {request.url.path} failed: {exc}")
            return problem_response(
                status,
                HTTPStatus(status).phrase,
                str(exc),
                instance=request.url.path,
                error=type(exc).__name__,
            )

        @app.exception_handler(RequestValidationError)
        async def request_validation_error(
            request: Request, exc: RequestValidationError
        ) -> JSONResponse:
            messages = []
            for error in exc.errors():
                loc = [str(item) for item in error.get("loc", ()) if item != "body"]
                field_path = ".".join(loc) or "body"
                messages.append(f"Field '{field_path}': {error.get('msg', 'invalid')}")
            return problem_response(
                400,
                "Bad Request",
                "; ".join(messages) or "Invalid request body",
                instance=request.url.path,
                error="ValidationError",
            )

    def _register_app_endpoints(self, app: FastAPI) -> None:
        @app.post("/create", status_code=202, tags=["Apps"])
        async def create(request: CreateAppRequest) -> JSONResponse:
            """Accept a deployment; progress is reported on /ws."""
            spec = request.to_spec(self.config.routing.domain_suffix)
            handle = self.controller.submit(spec)
            body = AcceptedResponse(
                app_name=spec.name, job_id=handle.job_id, domain=spec.domain
            )
            return JSONResponse(body.model_dump(by_alias=True), status_code=202)

        @app.post("/start", status_code=201, tags=["Apps"])
        async def start(request: AppNameRequest) -> JSONResponse:
            """Scale an application back to one replica."""
            await self.controller.scale(request.app_name, 1)
            return self._operation_done(request.app_name, "started")

        @app.post("/stop", status_code=201, tags=["Apps"])
        async def stop(request: AppNameRequest) -> JSONResponse:
            """Scale an application down to zero replicas."""
            await self.controller.scale(request.app_name, 0)
            return self._operation_done(request.app_name, "stopped")

        @app.post("/remove", status_code=201, tags=["Apps"])
        async def remove(request: AppNameRequest) -> JSONResponse:
            """Remove an application from the stack."""
            await self.controller.remove(request.app_name)
            return self._operation_done(request.app_name, "removed")

        @app.get("/apps", tags=["Apps"])
        async def list_apps() -> JSONResponse:
            """List declared applications with their live status."""
            apps = await asyncio.to_thread(self.catalog.list_apps)
            body = AppListResponse(apps=apps, total=len(apps))
            return JSONResponse(body.model_dump(mode="json", by_alias=True))

    @staticmethod
    def _operation_done(app_name: str, verb: str) -> JSONResponse:
        body = OperationResponse(
            app_name=app_name, message=f"Application '{app_name}' {verb}"
        )
        return JSONResponse(body.model_dump(by_alias=True), status_code=201)

    def _register_event_stream(self, app: FastAPI) -> None:
        @app.websocket("/ws")
        async def events(websocket: WebSocket) -> None:
            """Stream every status event emitted after the client connected."""
            await websocket.accept()
            try:
                subscription = self.bus.subscribe()
            except SubscriptionClosedError:
                await websocket.close(code=1001)
                return

            disconnected = asyncio.create_task(_wait_for_disconnect(websocket))
            try:
                while True:
                    next_item = asyncio.create_task(subscription.recv())
                    done, _ = await asyncio.wait(
                        {next_item, disconnected},
                        return_when=asyncio.FIRST_COMPLETED,
                    )
                    if next_item not in done:
                        next_item.cancel()
                        break
                    try:
                        item = next_item.result()
                    except SubscriptionClosedError:
                        await websocket.close(code=1001)
                        break
                    await websocket.send_text(item.to_json())
            except WebSocketDisconnect:
                logger.debug("Event stream client disconnected")
            finally:
                subscription.close()
                disconnected.cancel()

    def _register_health_endpoints(self, app: FastAPI) -> None:
        @app.get("/health", response_model=HealthResponse, tags=["Health"])
        async def health() -> HealthResponse:
            """Basic health check endpoint."""
            return HealthResponse(
                status="healthy" if self.is_ready else "unhealthy",
                state=self.state,
                accepting_jobs=self.controller.accepting,
                active_jobs=len(self.controller.active_jobs()),
                subscribers=self.bus.subscriber_count,
                uptime_seconds=self.uptime_seconds,
            )

        @app.get("/ready", tags=["Health"])
        async def ready() -> dict[str, bool]:
            """Readiness check endpoint for orchestrators."""
            return {"ready": self.is_ready and self.controller.accepting}

        @app.get("/metrics", include_in_schema=False)
        async def metrics() -> Response:
            """Serve Prometheus metrics."""
            return Response(
                content=self.metrics.render(), media_type=self.metrics.content_type
            )

    async def start(self) -> None:
        """Start the server and begin accepting requests.

        Creates the manifest document when it does not exist yet.
        """
        if self._app is None:
            self.create_app()

        await asyncio.to_thread(self.store.ensure_document)
        self._start_time = datetime.now(timezone.utc)
        self.state = ServerState.RUNNING
        logger.info(
            f"Control plane started at http://{self.config.server.host}:"
            f"{self.config.server.port} managing {self.store.path}"
        )

    async def stop(self) -> None:
        """Stop the server gracefully.

        Stops accepting jobs, waits for in-flight ones up to the grace
        period, tears the stack down (bounded by the teardown timeout) and
        closes the event bus.
        """
        self.state = ServerState.SHUTTING_DOWN
        await self.controller.shutdown(self.config.shutdown_grace_seconds)
        if self.config.teardown_on_shutdown:
            await self.controller.teardown(self.config.teardown_timeout_seconds)
        self.bus.close()
        self.state = ServerState.STOPPED
        logger.info("Control plane stopped")
