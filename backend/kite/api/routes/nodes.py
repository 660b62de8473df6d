from typing import Any, Optional

from fastapi import APIRouter, Depends

from kite.config import Settings
from kite.dependencies import get_registry, provide_settings
from kite.handlers.base import with_timeout
from kite.handlers.registry import HandlerRegistry
from kite.schemas.kubernetes import DrainRequest, NodeJobResult, OperationResult, TaintRequest, UntaintRequest

router = APIRouter(prefix="/nodes/_all/{name}", tags=["nodes"])


@router.post("/drain", summary="Cordon a node and evict its pods")
async def drain_node(
    name: str,
    payload: Optional[DrainRequest] = None,
    registry: HandlerRegistry = Depends(get_registry),
    settings: Settings = Depends(provide_settings),
) -> dict[str, Any]:
    return await with_timeout(
        registry.nodes.drain(name, payload or DrainRequest()), settings.request_timeout_seconds
    )


@router.post("/cordon", response_model=OperationResult, summary="Mark a node unschedulable")
async def cordon_node(
    name: str,
    registry: HandlerRegistry = Depends(get_registry),
    settings: Settings = Depends(provide_settings),
) -> dict[str, Any]:
    return await with_timeout(registry.nodes.cordon(name), settings.request_timeout_seconds)


@router.post("/uncordon", response_model=OperationResult, summary="Mark a node schedulable")
async def uncordon_node(
    name: str,
    registry: HandlerRegistry = Depends(get_registry),
    settings: Settings = Depends(provide_settings),
) -> dict[str, Any]:
    return await with_timeout(registry.nodes.uncordon(name), settings.request_timeout_seconds)


@router.post("/taint", summary="Add or replace a taint by key")
async def taint_node(
    name: str,
    payload: TaintRequest,
    registry: HandlerRegistry = Depends(get_registry),
    settings: Settings = Depends(provide_settings),
) -> dict[str, Any]:
    return await with_timeout(registry.nodes.taint(name, payload), settings.request_timeout_seconds)


@router.post("/untaint", summary="Remove a taint by key")
async def untaint_node(
    name: str,
    payload: UntaintRequest,
    registry: HandlerRegistry = Depends(get_registry),
    settings: Settings = Depends(provide_settings),
) -> dict[str, Any]:
    return await with_timeout(registry.nodes.untaint(name, payload.key), settings.request_timeout_seconds)


@router.get("/events", summary="Events involving the node, newest first")
async def node_events(
    name: str,
    registry: HandlerRegistry = Depends(get_registry),
    settings: Settings = Depends(provide_settings),
) -> list[dict[str, Any]]:
    return await with_timeout(registry.nodes.events(name), settings.request_timeout_seconds)


@router.post("/restart-kubelet", response_model=NodeJobResult, response_model_exclude_none=True)
async def restart_kubelet(
    name: str,
    registry: HandlerRegistry = Depends(get_registry),
    settings: Settings = Depends(provide_settings),
) -> dict[str, Any]:
    return await with_timeout(registry.nodes.restart_kubelet(name), settings.request_timeout_seconds)


@router.post("/restart-kubeproxy", response_model=NodeJobResult, response_model_exclude_none=True)
async def restart_kubeproxy(
    name: str,
    registry: HandlerRegistry = Depends(get_registry),
    settings: Settings = Depends(provide_settings),
) -> dict[str, Any]:
    return await with_timeout(registry.nodes.restart_kubeproxy(name), settings.request_timeout_seconds)


@router.get("/containerd-config", response_model=NodeJobResult, response_model_exclude_none=True)
async def containerd_config(
    name: str,
    registry: HandlerRegistry = Depends(get_registry),
    settings: Settings = Depends(provide_settings),
) -> dict[str, Any]:
    return await with_timeout(registry.nodes.containerd_config(name), settings.request_timeout_seconds)


@router.get("/cni-config", response_model=NodeJobResult, response_model_exclude_none=True)
async def cni_config(
    name: str,
    registry: HandlerRegistry = Depends(get_registry),
    settings: Settings = Depends(provide_settings),
) -> dict[str, Any]:
    return await with_timeout(registry.nodes.cni_config(name), settings.request_timeout_seconds)
