"""HTTP API for the tunnel service."""

import time
import uuid
from collections.abc import AsyncGenerator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Annotated, Any

from fastapi import APIRouter, Depends, FastAPI, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from . import __version__
from .common.exceptions import ApiMessage, TunnelApiError
from .common.logging import bind_request_context, clear_request_context, get_logger
from .config import Settings, get_settings
from .process import ConnectivityTester, ForwarderProcessManager
from .tunnels import (
    ConfigResponse,
    CreateTunnelRequest,
    TestConnectionRequest,
    TestConnectionResponse,
    TunnelController,
    TunnelListItem,
    TunnelRepository,
    TunnelResponse,
    TunnelStore,
    UpdateTunnelRequest,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/api", tags=["tunnels"])

REQUEST_ID_HEADER = "X-Request-ID"


def build_controller(settings: Settings) -> TunnelController:
    """Wire the production controller from settings."""
    return TunnelController(
        store=TunnelStore(),
        repository=TunnelRepository(settings.tunnels_path),
        forwarder=ForwarderProcessManager(settings.forwarder_binary),
        tester=ConnectivityTester(settings.tester_binary),
        hostname=settings.hostname,
    )


def get_controller(request: Request) -> TunnelController:
    return request.app.state.controller  # type: ignore[no-any-return]


Controller = Annotated[TunnelController, Depends(get_controller)]


@router.get("/config", response_model=ConfigResponse)
async def get_config(controller: Controller) -> ConfigResponse:
    return controller.config()


@router.get(
    "/tunnels", response_model=list[TunnelListItem], response_model_exclude_none=True
)
async def list_tunnels(controller: Controller) -> list[TunnelListItem]:
    return await controller.list_tunnels()


@router.post(
    "/tunnels",
    response_model=TunnelResponse,
    response_model_exclude_none=True,
    status_code=status.HTTP_201_CREATED,
)
async def create_tunnel(
    payload: CreateTunnelRequest, controller: Controller
) -> TunnelResponse:
    """Create a tunnel and start its forwarder when enabled."""
    return await controller.create(payload)


@router.put(
    "/tunnels/{tunnel_id}", response_model=TunnelResponse, response_model_exclude_none=True
)
async def update_tunnel(
    tunnel_id: str, payload: UpdateTunnelRequest, controller: Controller
) -> TunnelResponse:
    """Apply a partial update to a tunnel."""
    return await controller.update(tunnel_id, payload)


@router.delete("/tunnels/{tunnel_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_tunnel(tunnel_id: str, controller: Controller) -> Response:
    await controller.delete(tunnel_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/test", response_model=TestConnectionResponse)
async def run_connection_test(
    payload: TestConnectionRequest, controller: Controller
) -> TestConnectionResponse:
    """Run the external connectivity test; failures are reported in the body."""
    return await controller.test_connection(payload.target_host, payload.target_port)


# Error handling ------------------------------------------------------------
def error_response(status_code: int, message: ApiMessage) -> JSONResponse:
    """Serialize ``{"error": {"id", "params"}}``."""
    return JSONResponse(
        status_code=status_code,
        content={"error": message.model_dump(mode="json")},
    )


async def _handle_tunnel_error(request: Request, exc: TunnelApiError) -> JSONResponse:
    logger.warning(
        "Request rejected",
        method=request.method,
        path=request.url.path,
        status=exc.status_code,
        error_id=exc.message_id,
        params=exc.params,
    )
    return error_response(exc.status_code, exc.message)


async def _handle_request_validation(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = exc.errors()
    detail = "; ".join(
        f"{'.'.join(str(part) for part in error.get('loc', ()))}: {error.get('msg', '')}"
        for error in errors
    )
    logger.warning("Request validation failed", path=request.url.path, detail=detail)
    return error_response(
        422,
        ApiMessage(id="api.error.invalid_request", params={"detail": detail}),
    )


async def _handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error", method=request.method, path=request.url.path)
    return error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR, ApiMessage(id="api.error.internal")
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(TunnelApiError, _handle_tunnel_error)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _handle_request_validation)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, _handle_unexpected)


# App factory ---------------------------------------------------------------
def create_app(
    settings: Settings | None = None, controller: TunnelController | None = None
) -> FastAPI:
    """Build the FastAPI application.

    Args:
        settings: Service settings (environment-derived when omitted)
        controller: Pre-built controller, mainly for tests

    Returns:
        Application whose lifespan restores persisted tunnels on startup
        and stops forwarders on shutdown
    """
    settings = settings or get_settings()
    controller = controller or build_controller(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info(
            "Starting tunnel service",
            version=__version__,
            hostname=settings.hostname,
            tunnels_path=str(settings.tunnels_path),
        )
        await controller.boot()
        try:
            yield
        finally:
            if settings.stop_forwarders_on_shutdown:
                await controller.shutdown()
            logger.info("Tunnel service stopped")

    app = FastAPI(title="tailtunnel", version=__version__, lifespan=lifespan)
    app.state.controller = controller
    app.state.settings = settings

    @app.middleware("http")
    async def log_requests(
        request: Request, call_next: Callable[[Request], Awaitable[Any]]
    ) -> Any:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        bind_request_context(request_id=request_id)
        start = time.perf_counter()
        try:
            response = await call_next(request)
            response.headers[REQUEST_ID_HEADER] = request_id
            logger.info(
                "Handled request",
                method=request.method,
                path=request.url.path,
                status=response.status_code,
                duration_ms=round((time.perf_counter() - start) * 1000, 2),
            )
            return response
        finally:
            clear_request_context()

    register_exception_handlers(app)
    app.include_router(router)

    if settings.static_dir.is_dir():
        app.mount("/", StaticFiles(directory=settings.static_dir, html=True), name="static")
    else:
        logger.info("Static directory not found, frontend disabled", path=str(settings.static_dir))

    return app
