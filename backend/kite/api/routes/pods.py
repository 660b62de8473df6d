from typing import Any

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from kite.config import Settings
from kite.dependencies import get_registry, provide_settings
from kite.handlers.base import with_timeout
from kite.handlers.pods import DEFAULT_HISTORY_LIMIT
from kite.handlers.registry import HandlerRegistry
from kite.schemas.kubernetes import BatchOperationResponse, BatchPodRestartRequest, PodHistory, PodHistoryBatch

router = APIRouter(prefix="/pods", tags=["pods"])


@router.post(
    "/batch/restart",
    response_model=BatchOperationResponse,
    responses={206: {"model": BatchOperationResponse, "description": "Some pods failed to restart"}},
    summary="Restart several pods concurrently",
)
async def restart_pods_batch(
    payload: BatchPodRestartRequest,
    registry: HandlerRegistry = Depends(get_registry),
    settings: Settings = Depends(provide_settings),
) -> JSONResponse:
    body, status_code = await registry.pods.batch_restart(payload.pods, timeout=settings.batch_timeout_seconds)
    return JSONResponse(status_code=status_code, content=body)


@router.post("/{namespace}/{name}/restart", summary="Restart a pod by deleting it")
async def restart_pod(
    namespace: str,
    name: str,
    registry: HandlerRegistry = Depends(get_registry),
    settings: Settings = Depends(provide_settings),
) -> dict[str, Any]:
    return await with_timeout(registry.pods.restart(namespace, name), settings.request_timeout_seconds)


@router.get("/{namespace}/history", response_model=PodHistoryBatch, summary="History of pods in a namespace")
async def get_pods_history(
    namespace: str,
    label_selector: str | None = Query(default=None, alias="labelSelector"),
    limit: int = Query(default=DEFAULT_HISTORY_LIMIT),
    registry: HandlerRegistry = Depends(get_registry),
    settings: Settings = Depends(provide_settings),
) -> PodHistoryBatch:
    return await with_timeout(
        registry.pods.histories(namespace, label_selector=label_selector, limit=limit),
        settings.request_timeout_seconds,
    )


@router.get("/{namespace}/{name}/history", response_model=PodHistory, summary="Node, restart and event history of a pod")
async def get_pod_history(
    namespace: str,
    name: str,
    registry: HandlerRegistry = Depends(get_registry),
    settings: Settings = Depends(provide_settings),
) -> PodHistory:
    return await with_timeout(registry.pods.history(namespace, name), settings.request_timeout_seconds)
