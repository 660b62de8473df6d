"""
Generic CRUD for every built-in kind and every CRD, plus the custom
resource operations (related, events, restart, scale).

Registered after the kind-specific routers so their literal paths win.
"""

from typing import Any

from fastapi import APIRouter, Depends, Request

from kite.api.body import read_manifest
from kite.config import Settings
from kite.dependencies import get_registry, provide_settings
from kite.exceptions import NotFoundError
from kite.handlers.base import ALL_NAMESPACES, with_timeout
from kite.handlers.cr import CustomResourceHandler
from kite.handlers.registry import HandlerRegistry
from kite.schemas.kubernetes import ScaleRequest

router = APIRouter(tags=["resources"])


def _custom(registry: HandlerRegistry, resource: str) -> CustomResourceHandler:
    if resource in registry.builtin:
        raise NotFoundError(f"Operation not supported for {resource}")
    return registry.custom(resource)


# custom resource operations


@router.get("/{resource}/{namespace}/{name}/related", summary="Pods and services related to a custom resource")
async def cr_related(
    resource: str,
    namespace: str,
    name: str,
    registry: HandlerRegistry = Depends(get_registry),
    settings: Settings = Depends(provide_settings),
) -> dict[str, Any]:
    return await with_timeout(_custom(registry, resource).related(namespace, name), settings.request_timeout_seconds)


@router.get("/{resource}/{namespace}/{name}/events", summary="Events of a custom resource")
async def cr_events(
    resource: str,
    namespace: str,
    name: str,
    registry: HandlerRegistry = Depends(get_registry),
    settings: Settings = Depends(provide_settings),
) -> dict[str, Any]:
    return await with_timeout(_custom(registry, resource).events(namespace, name), settings.request_timeout_seconds)


@router.post("/{resource}/{namespace}/{name}/restart", summary="Stamp the restart annotation on a custom resource")
async def cr_restart(
    resource: str,
    namespace: str,
    name: str,
    registry: HandlerRegistry = Depends(get_registry),
    settings: Settings = Depends(provide_settings),
) -> dict[str, Any]:
    return await with_timeout(_custom(registry, resource).restart(namespace, name), settings.request_timeout_seconds)


@router.post("/{resource}/{namespace}/{name}/scale", summary="Set spec.replicas on a custom resource")
async def cr_scale(
    resource: str,
    namespace: str,
    name: str,
    payload: ScaleRequest,
    registry: HandlerRegistry = Depends(get_registry),
    settings: Settings = Depends(provide_settings),
) -> dict[str, Any]:
    return await with_timeout(
        _custom(registry, resource).scale(namespace, name, payload.replicas), settings.request_timeout_seconds
    )


# CRUD


@router.get("/{resource}", summary="List a resource across all namespaces")
async def list_all(
    resource: str,
    registry: HandlerRegistry = Depends(get_registry),
    settings: Settings = Depends(provide_settings),
) -> dict[str, Any]:
    return await with_timeout(registry.resolve(resource).list(ALL_NAMESPACES), settings.request_timeout_seconds)


@router.post("/{resource}", status_code=201, summary="Create a cluster-scoped resource")
async def create_cluster_scoped(
    resource: str,
    request: Request,
    registry: HandlerRegistry = Depends(get_registry),
    settings: Settings = Depends(provide_settings),
) -> dict[str, Any]:
    body = await read_manifest(request)
    return await with_timeout(registry.resolve(resource).create("", body), settings.request_timeout_seconds)


@router.get("/{resource}/{namespace}", summary="List a resource in a namespace (_all for every namespace)")
async def list_namespaced(
    resource: str,
    namespace: str,
    registry: HandlerRegistry = Depends(get_registry),
    settings: Settings = Depends(provide_settings),
) -> dict[str, Any]:
    return await with_timeout(registry.resolve(resource).list(namespace), settings.request_timeout_seconds)


@router.post("/{resource}/{namespace}", status_code=201, summary="Create a resource in a namespace")
async def create_namespaced(
    resource: str,
    namespace: str,
    request: Request,
    registry: HandlerRegistry = Depends(get_registry),
    settings: Settings = Depends(provide_settings),
) -> dict[str, Any]:
    body = await read_manifest(request)
    return await with_timeout(registry.resolve(resource).create(namespace, body), settings.request_timeout_seconds)


@router.get("/{resource}/{namespace}/{name}", summary="Get a resource (_all namespace for cluster-scoped)")
async def get_resource(
    resource: str,
    namespace: str,
    name: str,
    registry: HandlerRegistry = Depends(get_registry),
    settings: Settings = Depends(provide_settings),
) -> dict[str, Any]:
    return await with_timeout(registry.resolve(resource).get(namespace, name), settings.request_timeout_seconds)


@router.put("/{resource}/{namespace}/{name}", summary="Replace a resource")
async def update_resource(
    resource: str,
    namespace: str,
    name: str,
    request: Request,
    registry: HandlerRegistry = Depends(get_registry),
    settings: Settings = Depends(provide_settings),
) -> dict[str, Any]:
    body = await read_manifest(request)
    return await with_timeout(
        registry.resolve(resource).update(namespace, name, body), settings.request_timeout_seconds
    )


@router.delete("/{resource}/{namespace}/{name}", summary="Delete a resource with foreground propagation")
async def delete_resource(
    resource: str,
    namespace: str,
    name: str,
    registry: HandlerRegistry = Depends(get_registry),
    settings: Settings = Depends(provide_settings),
) -> dict[str, Any]:
    return await with_timeout(registry.resolve(resource).delete(namespace, name), settings.request_timeout_seconds)
