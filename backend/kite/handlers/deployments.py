from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional, Tuple

import structlog
from kubernetes.client.rest import ApiException

from kite.exceptions import AppException, BadRequestError, KubernetesAPIError, NotFoundError
from kite.handlers.base import rfc3339_now
from kite.handlers.batch import run_batch, summarize
from kite.handlers.generic import GenericResourceHandler
from kite.handlers.kinds import KINDS_BY_RESOURCE
from kite.kube.client import K8sClient
from kite.kube.unstructured import iter_items, selector_matches
from kite.schemas.kubernetes import ResourceIdentifier, RestartResult

logger = structlog.get_logger(__name__)

RESTART_ANNOTATION = "kubectl.kubernetes.io/restartedAt"

SCALE_RESTART_REPLICAS = 3
SCALE_UP_SETTLE_SECONDS = 3.0
RESTART_SETTLE_SECONDS = 5.0


class DeploymentHandler(GenericResourceHandler):
    """Deployments plus rolling restart, scale and related-service lookup."""

    def __init__(self, client: K8sClient) -> None:
        super().__init__(client, KINDS_BY_RESOURCE["deployments"])
        self.scale_up_settle_seconds = SCALE_UP_SETTLE_SECONDS
        self.restart_settle_seconds = RESTART_SETTLE_SECONDS

    async def _set_replicas(self, namespace: str, name: str, replicas: int) -> Dict[str, Any]:
        deployment = await self.read(namespace, name)
        deployment.set(replicas, "spec", "replicas")
        return await self.replace(namespace, name, deployment.object)

    async def _annotate_restart(self, namespace: str, name: str) -> str:
        deployment = await self.read(namespace, name)
        annotations = deployment.get("spec", "template", "metadata", "annotations")
        if not isinstance(annotations, dict):
            annotations = {}
            deployment.set(annotations, "spec", "template", "metadata", "annotations")
        timestamp = rfc3339_now()
        annotations[RESTART_ANNOTATION] = timestamp
        await self.replace(namespace, name, deployment.object)
        return timestamp

    async def restart(self, namespace: str, name: str) -> Dict[str, Any]:
        logger.info("deployments.restart", namespace=namespace, name=name)
        try:
            timestamp = await self._annotate_restart(namespace, name)
        except KubernetesAPIError as exc:
            raise KubernetesAPIError(f"Failed to restart deployment: {exc.message}") from exc
        logger.info("deployments.restart_triggered", namespace=namespace, name=name)
        return {
            "message": f"Deployment {name} rolling restart triggered successfully",
            "deployment": name,
            "namespace": namespace,
            "timestamp": timestamp,
            "annotation": RESTART_ANNOTATION,
        }

    async def scale(self, namespace: str, name: str, replicas: int) -> Dict[str, Any]:
        try:
            deployment = await self._set_replicas(namespace, name, replicas)
        except KubernetesAPIError as exc:
            raise KubernetesAPIError(f"Failed to scale deployment: {exc.message}") from exc
        logger.info("deployments.scaled", namespace=namespace, name=name, replicas=replicas)
        return {"message": "Deployment scaled successfully", "deployment": deployment, "replicas": replicas}

    async def related(self, namespace: str, name: str) -> Dict[str, Any]:
        deployment = await self.read(namespace, name)
        match_labels = deployment.get("spec", "selector", "matchLabels")
        if not match_labels:
            return {"services": []}
        try:
            services = await self.client.list_core("services", "service", namespace)
        except ApiException as exc:
            raise KubernetesAPIError(f"Failed to list services: {exc}") from exc
        related = [
            svc for svc in iter_items(services) if selector_matches((svc.get("spec") or {}).get("selector"), match_labels)
        ]
        return {"services": related}

    async def _restart_item(self, item: ResourceIdentifier) -> RestartResult:
        try:
            await self._annotate_restart(item.namespace, item.name)
        except NotFoundError:
            return RestartResult(namespace=item.namespace, name=item.name, success=False, error="Deployment not found")
        except AppException as exc:
            logger.error("deployments.batch_restart_item_failed", namespace=item.namespace, name=item.name, error=exc.message)
            return RestartResult(
                namespace=item.namespace, name=item.name, success=False, error=f"Failed to restart deployment: {exc.message}"
            )
        return RestartResult(namespace=item.namespace, name=item.name, success=True)

    async def batch_restart(self, items: List[ResourceIdentifier], *, timeout: float) -> Tuple[Dict[str, Any], int]:
        if not items:
            raise BadRequestError("No deployments specified for restart")
        logger.info("deployments.batch_restart_start", count=len(items))
        results = await run_batch(items, self._restart_item, timeout=timeout)
        return summarize("Batch deployment restart", len(items), results)

    async def _scale_restart_item(self, item: ResourceIdentifier, final_replicas: Optional[int]) -> RestartResult:
        """Scale single-replica deployments up before restarting so the rollout keeps serving."""
        ns, name = item.namespace, item.name

        def failed(error: str) -> RestartResult:
            logger.error("deployments.scale_restart_item_failed", namespace=ns, name=name, error=error)
            return RestartResult(namespace=ns, name=name, success=False, error=error)

        try:
            deployment = await self.read(ns, name)
        except NotFoundError:
            return failed("Deployment not found")
        except AppException as exc:
            return failed(f"Failed to get deployment: {exc.message}")

        original = deployment.get("spec", "replicas")
        if original is None:
            original = 1
        if original == 1:
            deployment.set(SCALE_RESTART_REPLICAS, "spec", "replicas")
            try:
                await self.replace(ns, name, deployment.object)
            except AppException as exc:
                return failed(f"Failed to scale to {SCALE_RESTART_REPLICAS} replicas: {exc.message}")
            await asyncio.sleep(self.scale_up_settle_seconds)

        try:
            await self._annotate_restart(ns, name)
        except AppException as exc:
            return failed(f"Failed to restart deployment: {exc.message}")

        if final_replicas == 1 and original == 1:
            await asyncio.sleep(self.restart_settle_seconds)
            try:
                await self._set_replicas(ns, name, 1)
            except AppException as exc:
                return failed(f"Failed to scale back to 1 replica: {exc.message}")

        logger.info("deployments.scale_restart_done", namespace=ns, name=name)
        return RestartResult(namespace=ns, name=name, success=True)

    async def batch_scale_restart(
        self, items: List[ResourceIdentifier], final_replicas: Optional[int], *, timeout: float
    ) -> Tuple[Dict[str, Any], int]:
        if not items:
            raise BadRequestError("No deployments specified for scale-restart")
        logger.info("deployments.scale_restart_start", count=len(items))

        async def _one(item: ResourceIdentifier) -> RestartResult:
            return await self._scale_restart_item(item, final_replicas)

        results = await run_batch(items, _one, timeout=timeout)
        return summarize("Scale-restart operation", len(items), results)
