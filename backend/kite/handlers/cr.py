"""
Custom resources addressed by CRD name.

The CRD is read fresh on every request; the first served version is
used for all calls. Related-resource and event discovery are label and
name heuristics, not ownerReference traversal.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from typing import Any, Dict, List

import structlog
from kubernetes.client.rest import ApiException

from kite.exceptions import BadRequestError, KubernetesAPIError, NotFoundError, raise_for_api_exception
from kite.handlers.base import ResourceHandler, normalize_namespace, require_mapping, rfc3339_now
from kite.handlers.generic import FOREGROUND
from kite.kube.client import K8sClient
from kite.kube.unstructured import Unstructured, iter_items, labels_match_any, selector_matches

logger = structlog.get_logger(__name__)

CRD_NOT_FOUND = "CustomResourceDefinition not found"
CR_NOT_FOUND = "Custom resource not found"
RESTART_ANNOTATION = "kite.kubernetes.io/restartedAt"


@dataclass(frozen=True)
class CRDInfo:
    name: str
    group: str
    version: str
    plural: str
    kind: str
    scope: str

    @property
    def namespaced(self) -> bool:
        return self.scope == "Namespaced"

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}"

    @classmethod
    def from_crd(cls, crd: Dict[str, Any]) -> "CRDInfo":
        spec = crd.get("spec") or {}
        names = spec.get("names") or {}
        versions = spec.get("versions") or []
        served = next((v for v in versions if v.get("served")), None)
        if served is None:
            raise BadRequestError(f"CustomResourceDefinition {crd['metadata']['name']} has no served version")
        return cls(
            name=crd["metadata"]["name"],
            group=spec.get("group", ""),
            version=served["name"],
            plural=names.get("plural", ""),
            kind=names.get("kind", ""),
            scope=spec.get("scope", "Namespaced"),
        )


def filter_related_pods(cr_labels: Dict[str, str], pods: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    if not cr_labels:
        return []
    return [pod for pod in pods if labels_match_any(cr_labels, Unstructured(pod).labels)]


def filter_related_services(cr_labels: Dict[str, str], services: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    if not cr_labels:
        return []
    return [svc for svc in services if selector_matches(Unstructured(svc).get("spec", "selector"), cr_labels)]


def event_matches(event: Dict[str, Any], crd_name: str, namespace: str, name: str) -> bool:
    """Substring rule: the CRD name only has to appear inside ``involvedObject.kind``."""
    involved = event.get("involvedObject") or {}
    return (
        involved.get("name") == name
        and (not namespace or involved.get("namespace") == namespace)
        and crd_name in (involved.get("kind") or "")
    )


class CustomResourceHandler(ResourceHandler):
    def __init__(self, client: K8sClient, crd_name: str) -> None:
        self.client = client
        self.crd_name = crd_name

    async def crd(self) -> CRDInfo:
        """Resolve the CRD by full name, or by plural when no group is given."""
        ext = self.client.apiextensions_v1
        if "." in self.crd_name:
            try:
                crd = await self.client.call(ext.read_custom_resource_definition, self.crd_name)
            except ApiException as exc:
                raise_for_api_exception(exc, not_found=CRD_NOT_FOUND)
            return CRDInfo.from_crd(self.client.serialize(crd))

        try:
            crds = self.client.serialize(await self.client.call(ext.list_custom_resource_definition))
        except ApiException as exc:
            raise_for_api_exception(exc, not_found=CRD_NOT_FOUND)
        matches = [c for c in iter_items(crds) if (c.get("spec") or {}).get("names", {}).get("plural") == self.crd_name]
        if not matches:
            raise NotFoundError(CRD_NOT_FOUND)
        if len(matches) > 1:
            names = ", ".join(sorted(c["metadata"]["name"] for c in matches))
            raise BadRequestError(f"Resource {self.crd_name} is ambiguous; use one of: {names}")
        return CRDInfo.from_crd(matches[0])

    def _scope(self, info: CRDInfo, namespace: str | None, *, required: bool) -> str:
        ns = normalize_namespace(namespace)
        if not info.namespaced:
            if ns:
                raise BadRequestError(f"{info.name} is cluster-scoped; use the _all namespace")
            return ""
        if required and not ns:
            raise BadRequestError("namespace is required for namespaced custom resources")
        return ns

    async def _read(self, info: CRDInfo, ns: str, name: str) -> Unstructured:
        api = self.client.custom_objects
        try:
            if info.namespaced:
                obj = await self.client.call(
                    api.get_namespaced_custom_object, info.group, info.version, ns, info.plural, name
                )
            else:
                obj = await self.client.call(api.get_cluster_custom_object, info.group, info.version, info.plural, name)
        except ApiException as exc:
            raise_for_api_exception(exc, not_found=CR_NOT_FOUND)
        return Unstructured(obj)

    async def _replace(self, info: CRDInfo, ns: str, cr: Unstructured, *, error_prefix: str = "") -> Dict[str, Any]:
        api = self.client.custom_objects
        try:
            if info.namespaced:
                result = await self.client.call(
                    api.replace_namespaced_custom_object, info.group, info.version, ns, info.plural, cr.name, cr.object
                )
            else:
                result = await self.client.call(
                    api.replace_cluster_custom_object, info.group, info.version, info.plural, cr.name, cr.object
                )
        except ApiException as exc:
            if error_prefix and exc.status != 404:
                raise KubernetesAPIError(f"{error_prefix}{exc}") from exc
            raise_for_api_exception(exc, not_found=CR_NOT_FOUND)
        self.client.invalidate(info.name)
        return result

    async def list(self, namespace: str) -> Dict[str, Any]:
        info = await self.crd()
        ns = self._scope(info, namespace, required=False)
        api = self.client.custom_objects

        async def _fetch() -> Dict[str, Any]:
            try:
                if ns:
                    return await self.client.call(
                        api.list_namespaced_custom_object, info.group, info.version, ns, info.plural
                    )
                return await self.client.call(api.list_cluster_custom_object, info.group, info.version, info.plural)
            except ApiException as exc:
                raise_for_api_exception(exc, not_found=CR_NOT_FOUND)

        return await self.client.cached_list(f"{info.name}:{ns or '_all'}", _fetch)

    async def get(self, namespace: str, name: str) -> Dict[str, Any]:
        info = await self.crd()
        ns = self._scope(info, namespace, required=True)
        return (await self._read(info, ns, name)).object

    async def create(self, namespace: str, body: Dict[str, Any]) -> Dict[str, Any]:
        info = await self.crd()
        cr = Unstructured.copy_of(require_mapping(body))
        ns = self._scope(info, normalize_namespace(namespace) or cr.namespace, required=True)
        cr.object.setdefault("apiVersion", info.api_version)
        cr.object.setdefault("kind", info.kind)
        if ns:
            cr.namespace = ns
        api = self.client.custom_objects
        try:
            if info.namespaced:
                result = await self.client.call(
                    api.create_namespaced_custom_object, info.group, info.version, ns, info.plural, cr.object
                )
            else:
                result = await self.client.call(
                    api.create_cluster_custom_object, info.group, info.version, info.plural, cr.object
                )
        except ApiException as exc:
            raise_for_api_exception(exc, not_found=CR_NOT_FOUND)
        self.client.invalidate(info.name)
        logger.info("crs.created", crd=info.name, namespace=ns, name=cr.name)
        return result

    async def update(self, namespace: str, name: str, body: Dict[str, Any]) -> Dict[str, Any]:
        info = await self.crd()
        ns = self._scope(info, namespace, required=True)
        existing = await self._read(info, ns, name)

        cr = Unstructured.copy_of(require_mapping(body))
        cr.object["apiVersion"] = existing.api_version
        cr.object["kind"] = existing.kind
        cr.name = existing.name
        cr.set(existing.resource_version, "metadata", "resourceVersion")
        cr.set(existing.uid, "metadata", "uid")
        if info.namespaced:
            cr.namespace = existing.namespace

        result = await self._replace(info, ns, cr)
        logger.info("crs.updated", crd=info.name, namespace=ns, name=name)
        return result

    async def delete(self, namespace: str, name: str) -> Dict[str, Any]:
        info = await self.crd()
        ns = self._scope(info, namespace, required=True)
        api = self.client.custom_objects
        try:
            if info.namespaced:
                await self.client.call(
                    api.delete_namespaced_custom_object,
                    info.group,
                    info.version,
                    ns,
                    info.plural,
                    name,
                    propagation_policy=FOREGROUND,
                )
            else:
                await self.client.call(
                    api.delete_cluster_custom_object,
                    info.group,
                    info.version,
                    info.plural,
                    name,
                    propagation_policy=FOREGROUND,
                )
        except ApiException as exc:
            raise_for_api_exception(exc, not_found=CR_NOT_FOUND)
        self.client.invalidate(info.name)
        logger.info("crs.deleted", crd=info.name, namespace=ns, name=name)
        return {"message": "Custom resource deleted successfully"}

    async def scale(self, namespace: str, name: str, replicas: int) -> Dict[str, Any]:
        info = await self.crd()
        ns = self._scope(info, namespace, required=True)
        cr = await self._read(info, ns, name)

        spec = cr.get("spec")
        if not isinstance(spec, dict):
            raise BadRequestError("This custom resource doesn't support scaling (no spec field)")
        if "replicas" not in spec:
            raise BadRequestError("This custom resource doesn't support scaling (no replicas field)")
        spec["replicas"] = replicas

        result = await self._replace(info, ns, cr, error_prefix="Failed to scale custom resource: ")
        logger.info("crs.scaled", crd=info.name, namespace=ns, name=name, replicas=replicas)
        return {"message": "Custom resource scaled successfully", "resource": result, "replicas": replicas}

    async def restart(self, namespace: str, name: str) -> Dict[str, Any]:
        info = await self.crd()
        ns = self._scope(info, namespace, required=True)
        cr = await self._read(info, ns, name)
        timestamp = rfc3339_now()
        cr.set_annotation(RESTART_ANNOTATION, timestamp)
        await self._replace(info, ns, cr, error_prefix="Failed to restart custom resource: ")
        logger.info("crs.restarted", crd=info.name, namespace=ns, name=name)
        return {"message": "Custom resource restarted successfully", "timestamp": timestamp}

    async def related(self, namespace: str, name: str) -> Dict[str, Any]:
        info = await self.crd()
        ns = self._scope(info, namespace, required=True)
        cr = await self._read(info, ns, name)
        labels = cr.labels

        related: Dict[str, Any] = {"pods": []}
        if labels:
            try:
                pods = await self.client.list_core("pods", "pod", ns)
                related["pods"] = filter_related_pods(labels, list(iter_items(pods)))
            except ApiException as exc:
                logger.warning("crs.related_pods_error", crd=info.name, name=name, error=str(exc))

        if info.namespaced:
            related["services"] = []
            if labels:
                try:
                    services = await self.client.list_core("services", "service", ns)
                    related["services"] = filter_related_services(labels, list(iter_items(services)))
                except ApiException as exc:
                    logger.warning("crs.related_services_error", crd=info.name, name=name, error=str(exc))
        return related

    async def events(self, namespace: str, name: str) -> Dict[str, Any]:
        ns = normalize_namespace(namespace)
        try:
            events = await self.client.list_core("events", "event", ns)
        except ApiException as exc:
            raise KubernetesAPIError(f"Failed to list events: {exc}") from exc
        matched = [e for e in iter_items(events) if event_matches(e, self.crd_name, ns, name)]
        return {"events": [copy.deepcopy(e) for e in matched]}
