from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Awaitable, Dict, Optional, TypeVar

from kite.exceptions import BadRequestError, KubernetesAPIError

ALL_NAMESPACES = "_all"

T = TypeVar("T")


class ResourceHandler(ABC):
    """CRUD surface every resource kind exposes to the generic routes."""

    @abstractmethod
    async def list(self, namespace: str) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def get(self, namespace: str, name: str) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def create(self, namespace: str, body: Dict[str, Any]) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def update(self, namespace: str, name: str, body: Dict[str, Any]) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def delete(self, namespace: str, name: str) -> Dict[str, Any]:
        ...


def normalize_namespace(namespace: Optional[str]) -> str:
    """Map the ``_all`` placeholder (and None) to the empty namespace."""
    if not namespace or namespace == ALL_NAMESPACES:
        return ""
    return namespace


def require_mapping(body: Any) -> Dict[str, Any]:
    if not isinstance(body, dict):
        raise BadRequestError("Invalid request body: expected a JSON or YAML object")
    return body


def rfc3339_now() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


async def with_timeout(awaitable: Awaitable[T], seconds: float) -> T:
    """Bound an operation by ``seconds``; the worker thread is left to finish on its own."""
    try:
        return await asyncio.wait_for(awaitable, timeout=seconds)
    except asyncio.TimeoutError as exc:
        raise KubernetesAPIError(f"operation timed out after {seconds:g}s", code="TIMEOUT") from exc
