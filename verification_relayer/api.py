"""
HTTP control plane for the verification relayer.

Provides REST endpoints for:
- Run state and statistics (GET /status, GET /stats)
- Liveness and chain connectivity (GET /health)
- Manual discovery sync (POST /trigger-sync)
- Manual sync of explicit addresses (POST /sync-addresses)
- Resetting the dedup state (POST /reset-sync)
"""

import resource
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from http import HTTPStatus
from typing import AsyncGenerator, Optional

import structlog
from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import __version__
from .auth import verify_api_token
from .config import Settings, get_settings
from .dependencies import get_reporter, get_supervisor
from .errors import ConfigError, NotRunningError, RelayerError
from .models import (
    ErrorResponse,
    HealthResponse,
    MemoryInfo,
    ResetSyncResponse,
    StatsResponse,
    StatusResponse,
    SyncAddressesRequest,
    SyncResponse,
    SyncResultModel,
)
from .status import StatusReporter
from .supervisor import RelayerSupervisor

logger = structlog.get_logger()

SERVICE_NAME = "cross-chain-verification-relayer"

_process_started = time.time()

router = APIRouter()


def _now() -> datetime:
    return datetime.now(timezone.utc)


def error_response(
    status_code: int, error: str, message: str, status: Optional[str] = None
) -> JSONResponse:
    body = ErrorResponse(error=error, message=message, status=status, timestamp=_now())
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(mode="json", by_alias=True, exclude_none=True),
    )


# ============================================================================
# Status
# ============================================================================


@router.get("/status", response_model=StatusResponse)
async def get_status(reporter: StatusReporter = Depends(get_reporter)) -> StatusResponse:
    """Current run state, statistics and chain info."""
    snapshot = await reporter.snapshot()
    return StatusResponse(service=SERVICE_NAME, timestamp=_now(), **snapshot.model_dump())


@router.get("/stats", response_model=StatsResponse)
async def get_stats(reporter: StatusReporter = Depends(get_reporter)) -> StatsResponse:
    """Cumulative counters."""
    return StatsResponse(service=SERVICE_NAME, timestamp=_now(), statistics=reporter.statistics())


@router.get("/health", response_model=HealthResponse)
async def health_check(reporter: StatusReporter = Depends(get_reporter)) -> HealthResponse:
    """
    Liveness plus relayer status.

    Always 200 while the process serves requests; inspect relayer.isRunning
    and relayer.chain.error for dependency health.
    """
    # ru_maxrss is reported in KiB on Linux
    max_rss = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss * 1024
    return HealthResponse(
        service=SERVICE_NAME,
        timestamp=_now(),
        uptime=time.time() - _process_started,
        memory=MemoryInfo(max_rss_bytes=max_rss),
        relayer=await reporter.snapshot(),
    )


# ============================================================================
# Control
# ============================================================================


@router.post(
    "/trigger-sync",
    response_model=SyncResponse,
    dependencies=[Depends(verify_api_token)],
)
async def trigger_sync(supervisor: RelayerSupervisor = Depends(get_supervisor)):
    """Run a full discovery sync now."""
    logger.info("manual_sync_triggered", source="api")
    try:
        result = await supervisor.trigger_manual_sync()
    except NotRunningError:
        raise
    except Exception as e:
        logger.error("manual_sync_failed", error=str(e))
        return error_response(500, "Sync operation failed", str(e))

    return SyncResponse(
        message="Cross-chain sync operation completed successfully",
        result=SyncResultModel.from_result(result),
        timestamp=_now(),
    )


@router.post(
    "/sync-addresses",
    response_model=SyncResponse,
    dependencies=[Depends(verify_api_token)],
)
async def sync_addresses(
    request: SyncAddressesRequest,
    supervisor: RelayerSupervisor = Depends(get_supervisor),
):
    """Sync an explicit list of addresses, bypassing discovery."""
    if not supervisor.is_running:
        raise NotRunningError("Relayer service not initialized")

    if not request.addresses:
        return error_response(400, "Invalid request", "Please provide an array of addresses to sync")

    logger.info("manual_address_sync_requested", count=len(request.addresses))
    try:
        result = await supervisor.trigger_manual_sync(request.addresses)
    except NotRunningError:
        raise
    except Exception as e:
        logger.error("manual_address_sync_failed", error=str(e))
        return error_response(500, "Address sync failed", str(e))

    return SyncResponse(
        message="Address sync completed",
        result=SyncResultModel.from_result(result),
        timestamp=_now(),
    )


@router.post(
    "/reset-sync",
    response_model=ResetSyncResponse,
    dependencies=[Depends(verify_api_token)],
)
async def reset_sync(supervisor: RelayerSupervisor = Depends(get_supervisor)):
    """Clear the dedup state and derived counters."""
    await supervisor.reset_sync_state()
    return ResetSyncResponse(message="Sync state reset successfully", timestamp=_now())


# ============================================================================
# Error handlers
# ============================================================================


async def _not_running_handler(request: Request, exc: NotRunningError) -> JSONResponse:
    return error_response(503, "Relayer service not initialized", str(exc), status="not-available")


async def _relayer_error_handler(request: Request, exc: RelayerError) -> JSONResponse:
    logger.error("request_failed", path=request.url.path, error=str(exc))
    return error_response(500, "Relayer error", str(exc))


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = "; ".join(
        f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg')}" for err in exc.errors()
    )
    return error_response(400, "Invalid request", details or "Malformed request body")


async def _http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code == 404:
        message = f"Route not found: {request.url.path}"
    else:
        message = str(exc.detail)
    response = error_response(exc.status_code, HTTPStatus(exc.status_code).phrase, message)
    if exc.headers:
        response.headers.update(exc.headers)
    return response


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "request_unhandled_error",
        path=request.url.path,
        error=str(exc),
        error_type=type(exc).__name__,
        exc_info=exc,
    )
    return error_response(500, "Internal server error", "An unexpected error occurred")


# ============================================================================
# App factory
# ============================================================================


def create_app(
    settings: Optional[Settings] = None,
    supervisor: Optional[RelayerSupervisor] = None,
) -> FastAPI:
    """
    Build the FastAPI app around a supervisor.

    The lifespan starts the supervisor. A ConfigError aborts startup; a
    NetworkError is logged and the app keeps serving in not-initialized state
    so /status can report it.
    """
    settings = settings or get_settings()
    supervisor = supervisor or RelayerSupervisor(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        try:
            await supervisor.start()
        except ConfigError:
            raise
        except RelayerError as e:
            logger.error("relayer_start_failed", error=str(e), error_type=type(e).__name__)

        logger.info(
            "api_started",
            version=__version__,
            host=settings.host,
            port=settings.port,
            relayer_running=supervisor.is_running,
        )

        yield

        await supervisor.stop()
        await supervisor.close()
        logger.info("api_stopped")

    app = FastAPI(
        title="Cross-Chain Verification Relayer",
        description="Status and control plane for the verification relayer",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.supervisor = supervisor

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(NotRunningError, _not_running_handler)
    app.add_exception_handler(RelayerError, _relayer_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, _http_error_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)

    app.include_router(router)
    return app
