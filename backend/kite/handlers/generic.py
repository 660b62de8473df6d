from __future__ import annotations

import copy
from typing import Any, Callable, Dict

import structlog
from kubernetes.client.rest import ApiException

from kite.exceptions import BadRequestError, raise_for_api_exception
from kite.handlers.base import ResourceHandler, normalize_namespace, require_mapping
from kite.handlers.kinds import ResourceKind
from kite.kube.client import K8sClient
from kite.kube.unstructured import Unstructured

logger = structlog.get_logger(__name__)

FOREGROUND = "Foreground"


class GenericResourceHandler(ResourceHandler):
    """CRUD for one built-in kind, driven by the client's method naming convention.

    ``list_namespaced_<stem>`` / ``list_<stem>_for_all_namespaces`` /
    ``read_namespaced_<stem>`` ... for namespaced kinds and ``list_<stem>``
    / ``read_<stem>`` ... for cluster-scoped ones.
    """

    def __init__(self, client: K8sClient, kind: ResourceKind) -> None:
        self.client = client
        self.kind = kind

    @property
    def resource(self) -> str:
        return self.kind.resource

    @property
    def not_found_message(self) -> str:
        return f"{self.kind.kind} not found"

    def _method(self, verb: str, *, all_namespaces: bool = False) -> Callable[..., Any]:
        api = self.client.api(self.kind.api)
        if self.kind.cluster_scoped:
            name = f"{verb}_{self.kind.stem}"
        elif all_namespaces:
            name = f"{verb}_{self.kind.stem}_for_all_namespaces"
        else:
            name = f"{verb}_namespaced_{self.kind.stem}"
        return getattr(api, name)

    def _scope_namespace(self, namespace: str | None, *, required: bool) -> str:
        ns = normalize_namespace(namespace)
        if self.kind.cluster_scoped:
            if ns:
                raise BadRequestError(f"{self.kind.kind} is cluster-scoped; use the _all namespace")
            return ""
        if required and not ns:
            raise BadRequestError(f"namespace is required for {self.resource}")
        return ns

    async def list(self, namespace: str) -> Dict[str, Any]:
        ns = self._scope_namespace(namespace, required=False)

        async def _fetch() -> Dict[str, Any]:
            try:
                if self.kind.cluster_scoped:
                    result = await self.client.call(self._method("list"))
                elif ns:
                    result = await self.client.call(self._method("list"), ns)
                else:
                    result = await self.client.call(self._method("list", all_namespaces=True))
            except ApiException as exc:
                raise_for_api_exception(exc, not_found=self.not_found_message)
            return self.client.serialize(result)

        return await self.client.cached_list(f"{self.resource}:{ns or '_all'}", _fetch)

    async def read(self, namespace: str, name: str) -> Unstructured:
        ns = self._scope_namespace(namespace, required=True)
        try:
            if self.kind.cluster_scoped:
                obj = await self.client.call(self._method("read"), name)
            else:
                obj = await self.client.call(self._method("read"), name, ns)
        except ApiException as exc:
            raise_for_api_exception(exc, not_found=self.not_found_message)
        return Unstructured(self.client.serialize(obj))

    async def replace(self, namespace: str, name: str, body: Dict[str, Any]) -> Dict[str, Any]:
        ns = self._scope_namespace(namespace, required=True)
        try:
            if self.kind.cluster_scoped:
                result = await self.client.call(self._method("replace"), name, body)
            else:
                result = await self.client.call(self._method("replace"), name, ns, body)
        except ApiException as exc:
            raise_for_api_exception(exc, not_found=self.not_found_message)
        self.client.invalidate(self.resource)
        return self.client.serialize(result)

    async def get(self, namespace: str, name: str) -> Dict[str, Any]:
        return (await self.read(namespace, name)).object

    async def create(self, namespace: str, body: Dict[str, Any]) -> Dict[str, Any]:
        body = copy.deepcopy(require_mapping(body))
        metadata = body.setdefault("metadata", {})
        if not isinstance(metadata, dict):
            raise BadRequestError("Invalid request body: metadata must be an object")
        ns = normalize_namespace(namespace) or ("" if self.kind.cluster_scoped else metadata.get("namespace", ""))
        ns = self._scope_namespace(ns, required=True)
        if ns:
            metadata["namespace"] = ns
        try:
            if self.kind.cluster_scoped:
                result = await self.client.call(self._method("create"), body)
            else:
                result = await self.client.call(self._method("create"), ns, body)
        except ApiException as exc:
            raise_for_api_exception(exc, not_found=self.not_found_message)
        self.client.invalidate(self.resource)
        logger.info("resources.created", resource=self.resource, namespace=ns, name=metadata.get("name"))
        return self.client.serialize(result)

    async def update(self, namespace: str, name: str, body: Dict[str, Any]) -> Dict[str, Any]:
        existing = await self.read(namespace, name)
        obj = Unstructured.copy_of(require_mapping(body))
        obj.name = existing.name or name
        if not self.kind.cluster_scoped:
            obj.namespace = existing.namespace
        obj.set(existing.resource_version, "metadata", "resourceVersion")
        obj.set(existing.uid, "metadata", "uid")

        result = await self.replace(namespace, name, obj.object)
        logger.info("resources.updated", resource=self.resource, namespace=namespace, name=name)
        return result

    async def delete(self, namespace: str, name: str) -> Dict[str, Any]:
        ns = self._scope_namespace(namespace, required=True)
        try:
            if self.kind.cluster_scoped:
                await self.client.call(self._method("delete"), name, propagation_policy=FOREGROUND)
            else:
                await self.client.call(self._method("delete"), name, ns, propagation_policy=FOREGROUND)
        except ApiException as exc:
            raise_for_api_exception(exc, not_found=self.not_found_message)
        self.client.invalidate(self.resource)
        logger.info("resources.deleted", resource=self.resource, namespace=ns, name=name)
        return {"message": f"{self.kind.kind} deleted successfully"}
