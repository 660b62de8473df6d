from typing import Any

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from kite.config import Settings
from kite.dependencies import get_registry, provide_settings
from kite.handlers.base import with_timeout
from kite.handlers.registry import HandlerRegistry
from kite.schemas.kubernetes import (
    BatchDeploymentRestartRequest,
    BatchOperationResponse,
    ScaleRequest,
    ScaleRestartRequest,
)

router = APIRouter(prefix="/deployments", tags=["deployments"])

_PARTIAL = {206: {"model": BatchOperationResponse, "description": "Some deployments failed"}}


@router.post(
    "/batch/restart",
    response_model=BatchOperationResponse,
    responses=_PARTIAL,
    summary="Rollout restart several deployments",
)
async def restart_deployments_batch(
    payload: BatchDeploymentRestartRequest,
    registry: HandlerRegistry = Depends(get_registry),
    settings: Settings = Depends(provide_settings),
) -> JSONResponse:
    body, status_code = await registry.deployments.batch_restart(
        payload.deployments, timeout=settings.batch_timeout_seconds
    )
    return JSONResponse(status_code=status_code, content=body)


@router.post(
    "/batch/scale-restart",
    response_model=BatchOperationResponse,
    responses=_PARTIAL,
    summary="Scale single-replica deployments up, restart, optionally scale back",
)
async def scale_restart_deployments_batch(
    payload: ScaleRestartRequest,
    registry: HandlerRegistry = Depends(get_registry),
    settings: Settings = Depends(provide_settings),
) -> JSONResponse:
    body, status_code = await registry.deployments.batch_scale_restart(
        payload.deployments, payload.final_replicas, timeout=settings.scale_restart_timeout_seconds
    )
    return JSONResponse(status_code=status_code, content=body)


@router.post("/{namespace}/{name}/restart", summary="Rollout restart a deployment")
async def restart_deployment(
    namespace: str,
    name: str,
    registry: HandlerRegistry = Depends(get_registry),
    settings: Settings = Depends(provide_settings),
) -> dict[str, Any]:
    return await with_timeout(registry.deployments.restart(namespace, name), settings.request_timeout_seconds)


@router.post("/{namespace}/{name}/scale", summary="Scale deployment replicas")
async def scale_deployment(
    namespace: str,
    name: str,
    payload: ScaleRequest,
    registry: HandlerRegistry = Depends(get_registry),
    settings: Settings = Depends(provide_settings),
) -> dict[str, Any]:
    return await with_timeout(
        registry.deployments.scale(namespace, name, payload.replicas), settings.request_timeout_seconds
    )


@router.get("/{namespace}/{name}/related", summary="Services selecting the deployment's pods")
async def deployment_related(
    namespace: str,
    name: str,
    registry: HandlerRegistry = Depends(get_registry),
    settings: Settings = Depends(provide_settings),
) -> dict[str, Any]:
    return await with_timeout(registry.deployments.related(namespace, name), settings.request_timeout_seconds)
