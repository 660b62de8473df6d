from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

import structlog
from kubernetes.client.rest import ApiException

from kite.exceptions import BadRequestError, KubernetesAPIError, NotFoundError
from kite.handlers.base import rfc3339_now
from kite.handlers.batch import run_batch, summarize
from kite.handlers.generic import FOREGROUND, GenericResourceHandler
from kite.handlers.kinds import KINDS_BY_RESOURCE
from kite.handlers.pod_history import build_pod_history
from kite.kube.client import K8sClient
from kite.kube.unstructured import iter_items
from kite.schemas.kubernetes import PodHistory, PodHistoryBatch, ResourceIdentifier, RestartResult

logger = structlog.get_logger(__name__)

DEFAULT_HISTORY_LIMIT = 50


class PodHandler(GenericResourceHandler):
    """Pods plus the restart and history operations."""

    def __init__(self, client: K8sClient) -> None:
        super().__init__(client, KINDS_BY_RESOURCE["pods"])

    async def _delete_for_restart(self, namespace: str, name: str) -> None:
        """Delete a pod so its controller recreates it.

        Raises ``NotFoundError`` when the pod cannot be read and
        ``KubernetesAPIError`` when the delete fails.
        """
        core = self.client.core_v1
        try:
            pod = await self.client.call(core.read_namespaced_pod, name, namespace)
        except ApiException as exc:
            raise NotFoundError(f"Pod not found: {exc}") from exc

        owners = self.client.serialize(pod).get("metadata", {}).get("ownerReferences") or []
        if not owners:
            logger.warning("pods.restart_no_owner", namespace=namespace, name=name)

        try:
            await self.client.call(core.delete_namespaced_pod, name, namespace, propagation_policy=FOREGROUND)
        except ApiException as exc:
            logger.error("pods.restart_delete_error", namespace=namespace, name=name, error=str(exc))
            raise KubernetesAPIError(f"Failed to restart pod: {exc}") from exc
        self.client.invalidate(self.resource)

    async def restart(self, namespace: str, name: str) -> Dict[str, Any]:
        logger.info("pods.restart", namespace=namespace, name=name)
        await self._delete_for_restart(namespace, name)
        logger.info("pods.restart_triggered", namespace=namespace, name=name)
        return {
            "message": f"Pod {name} restart triggered successfully",
            "pod": name,
            "namespace": namespace,
            "timestamp": rfc3339_now(),
        }

    async def _restart_item(self, item: ResourceIdentifier) -> RestartResult:
        try:
            await self._delete_for_restart(item.namespace, item.name)
        except (NotFoundError, KubernetesAPIError) as exc:
            logger.error("pods.batch_restart_item_failed", namespace=item.namespace, name=item.name, error=exc.message)
            return RestartResult(namespace=item.namespace, name=item.name, success=False, error=exc.message)
        return RestartResult(namespace=item.namespace, name=item.name, success=True)

    async def batch_restart(self, items: List[ResourceIdentifier], *, timeout: float) -> Tuple[Dict[str, Any], int]:
        if not items:
            raise BadRequestError("No pods specified for restart")
        logger.info("pods.batch_restart_start", count=len(items))
        results = await run_batch(items, self._restart_item, timeout=timeout)
        return summarize("Batch restart", len(items), results)

    async def _events_for(self, namespace: str, name: str) -> List[Dict[str, Any]]:
        try:
            events = await self.client.list_core(
                "events", "event", namespace, field_selector=f"involvedObject.name={name}"
            )
        except ApiException as exc:
            logger.warning("pods.history_events_error", namespace=namespace, name=name, error=str(exc))
            return []
        return list(iter_items(events))

    async def history(self, namespace: str, name: str) -> PodHistory:
        try:
            pod = await self.client.call(self.client.core_v1.read_namespaced_pod, name, namespace)
        except ApiException as exc:
            if exc.status == 404:
                raise NotFoundError(f"Pod not found: {exc}") from exc
            raise KubernetesAPIError(f"Failed to get pod history: {exc}") from exc
        events = await self._events_for(namespace, name)
        return build_pod_history(self.client.serialize(pod), events)

    async def histories(
        self, namespace: str, *, label_selector: Optional[str] = None, limit: int = DEFAULT_HISTORY_LIMIT
    ) -> PodHistoryBatch:
        kwargs: Dict[str, Any] = {"limit": limit if limit > 0 else DEFAULT_HISTORY_LIMIT}
        if label_selector:
            kwargs["label_selector"] = label_selector
        try:
            pods = await self.client.list_core("pods", "pod", namespace, **kwargs)
        except ApiException as exc:
            raise KubernetesAPIError(f"Failed to list pods: {exc}") from exc

        histories: List[PodHistory] = []
        for pod in iter_items(pods):
            name = pod.get("metadata", {}).get("name", "")
            events = await self._events_for(namespace, name)
            histories.append(build_pod_history(pod, events))
        return PodHistoryBatch(histories=histories, total=len(histories))
