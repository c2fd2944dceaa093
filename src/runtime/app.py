"""
Control plane for the offline runtime

Exposes the runtime to a host process over HTTP:
- GET  /v1/offline/status - lifecycle, generations and queue snapshot
- POST /v1/offline/commands - command channel (FORCE_ACTIVATE, WARM_URLS)
- POST /v1/offline/lifecycle/install - install the current version
- POST /v1/offline/lifecycle/activate - activate the installed version
- POST /v1/offline/queue - queue a mutation the host could not deliver
- GET  /v1/offline/queue - list queued mutations
- POST /v1/offline/sync/{tag} - connectivity restored, drain the queue
- POST /v1/offline/periodic-sync/{tag} - scheduler tick for the refresher
- POST /v1/offline/push - render a push payload
- POST /v1/offline/notifications/click - route a notification interaction
"""
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

import structlog
from fastapi import APIRouter, Body, Depends, FastAPI, Request
from fastapi.responses import JSONResponse

from ..shared.config import get_settings
from ..shared.exceptions import (
    InstallationFailed,
    LifecycleError,
    NetworkUnavailable,
    OfflineEdgeError,
    StorageUnavailable,
    UnsupportedEvent,
)
from ..shared.schemas import (
    CommandResult,
    NotificationClick,
    NotificationPayload,
    PushResult,
    QueuedMutation,
    QueuedMutationCreate,
    RuntimeStatus,
    SyncTrigger,
)
from .events import EventKind, OfflineRuntime

logger = structlog.get_logger(__name__)

router = APIRouter()

ERROR_STATUS = {
    NetworkUnavailable: 503,
    StorageUnavailable: 503,
    InstallationFailed: 503,
    LifecycleError: 409,
    UnsupportedEvent: 400,
}


def get_runtime(request: Request) -> OfflineRuntime:
    """Get the runtime for dependency injection."""
    return request.app.state.runtime


@router.get("/status", response_model=RuntimeStatus, summary="Offline layer status")
async def get_status(runtime: OfflineRuntime = Depends(get_runtime)) -> RuntimeStatus:
    return await runtime.status()


@router.post("/commands", summary="Send a command channel message")
async def post_command(
    message: Dict[str, Any] = Body(...),
    runtime: OfflineRuntime = Depends(get_runtime),
):
    """Unknown message types are ignored rather than rejected."""
    result: Optional[CommandResult] = await runtime.dispatch(EventKind.MESSAGE, message)
    if result is None:
        return {"ignored": True}
    return result


@router.post("/lifecycle/install", summary="Install the current version")
async def post_install(runtime: OfflineRuntime = Depends(get_runtime)) -> Dict[str, Any]:
    warmed = await runtime.dispatch(EventKind.INSTALL)
    return {
        "state": runtime.lifecycle.state.value,
        "api_prewarmed": warmed,
    }


@router.post("/lifecycle/activate", summary="Activate the installed version")
async def post_activate(runtime: OfflineRuntime = Depends(get_runtime)) -> Dict[str, Any]:
    deleted = await runtime.dispatch(EventKind.ACTIVATE)
    return {
        "state": runtime.lifecycle.state.value,
        "deleted_generations": deleted,
    }


@router.post("/queue", summary="Queue an undeliverable mutation")
async def post_queue(
    mutation: QueuedMutationCreate,
    runtime: OfflineRuntime = Depends(get_runtime),
) -> Dict[str, Any]:
    record_id = await runtime.queue.append(mutation)
    return {"id": record_id}


@router.get("/queue", response_model=List[QueuedMutation], summary="List queued mutations")
async def get_queue(runtime: OfflineRuntime = Depends(get_runtime)) -> List[QueuedMutation]:
    return await runtime.queue.list_all()


@router.post("/sync/{tag}", response_model=SyncTrigger, summary="Connectivity restored")
async def post_sync(tag: str, runtime: OfflineRuntime = Depends(get_runtime)) -> SyncTrigger:
    report = await runtime.dispatch(EventKind.SYNC, tag)
    if report is None:
        return SyncTrigger(tag=tag, handled=False)
    return SyncTrigger(tag=tag, handled=True, detail=report.model_dump(mode="json"))


@router.post("/periodic-sync/{tag}", response_model=SyncTrigger, summary="Periodic refresh tick")
async def post_periodic_sync(tag: str, runtime: OfflineRuntime = Depends(get_runtime)) -> SyncTrigger:
    handled = await runtime.dispatch(EventKind.PERIODIC_SYNC, tag)
    return SyncTrigger(tag=tag, handled=handled)


@router.post("/push", response_model=PushResult, summary="Render a push payload")
async def post_push(
    payload: Optional[NotificationPayload] = Body(None),
    runtime: OfflineRuntime = Depends(get_runtime),
) -> PushResult:
    notification = await runtime.dispatch(EventKind.PUSH, payload)
    return PushResult(notification=notification)


@router.post("/notifications/click", summary="Route a notification interaction")
async def post_notification_click(
    click: NotificationClick,
    runtime: OfflineRuntime = Depends(get_runtime),
) -> Dict[str, Any]:
    outcome = await runtime.dispatch(EventKind.NOTIFICATION_CLICK, click)
    return {"outcome": outcome.value}


async def offline_error_handler(request: Request, exc: OfflineEdgeError):
    """Map offline layer errors to HTTP errors with a consistent format."""
    status_code = 500
    for error_type, code in ERROR_STATUS.items():
        if isinstance(exc, error_type):
            status_code = code
            break

    logger.warning("Control plane request failed", path=request.url.path,
                   error_type=type(exc).__name__, error=str(exc))
    return JSONResponse(
        status_code=status_code,
        content={
            "error": {
                "type": type(exc).__name__,
                "message": str(exc),
                "status_code": status_code,
            }
        },
    )


def create_app(runtime: Optional[OfflineRuntime] = None) -> FastAPI:
    """
    Build the control plane application.

    When no runtime is given one is built from settings at startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        settings = get_settings()
        app.state.runtime = runtime or OfflineRuntime.from_settings(settings.offline)
        logger.info("Starting offline control plane", environment=settings.environment.value)
        await app.state.runtime.start()

        yield

        logger.info("Shutting down offline control plane")
        await app.state.runtime.close()

    settings = get_settings()
    app = FastAPI(
        title=settings.app_name,
        description="Control plane for the offline caching and sync layer",
        version=settings.app_version,
        lifespan=lifespan,
    )
    app.add_exception_handler(OfflineEdgeError, offline_error_handler)
    app.include_router(router, prefix="/v1/offline", tags=["Offline"])

    @app.get("/health", tags=["Health"])
    async def health_check() -> Dict[str, Any]:
        runtime_ = app.state.runtime
        queue_healthy = await runtime_.queue_database.health_check()
        return {
            "status": "healthy" if queue_healthy else "degraded",
            "version": runtime_.settings.version,
            "components": {
                "queue": {"status": "healthy" if queue_healthy else "unhealthy"},
                "lifecycle": {"state": runtime_.lifecycle.state.value},
            },
        }

    return app
