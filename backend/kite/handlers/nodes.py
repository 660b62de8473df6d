"""
Node maintenance: scheduling flags, taints, drain, events and the
privileged helper pods used to restart node services or read their
configuration.

Helper pods are fire-and-forget. The handlers return the pod name and
never wait for it to finish; callers read the pod logs.
"""

from __future__ import annotations

import time
from typing import Any, Dict, List, Optional, Tuple

import structlog
from kubernetes.client.rest import ApiException

from kite.exceptions import BadRequestError, KubernetesAPIError, NotFoundError
from kite.handlers.generic import GenericResourceHandler
from kite.handlers.kinds import KINDS_BY_RESOURCE
from kite.handlers.pod_history import timestamp_sort_key
from kite.kube.client import K8sClient
from kite.kube.unstructured import Unstructured, iter_items
from kite.schemas.kubernetes import DrainRequest, TaintRequest

logger = structlog.get_logger(__name__)

MIRROR_POD_ANNOTATION = "kubernetes.io/config.mirror"
KUBE_PROXY_LABELS = (("k8s-app", "kube-proxy"), ("component", "kube-proxy"))
NSENTER = ["nsenter", "--target", "1", "--mount", "--uts", "--ipc", "--net", "--pid", "--"]
CONFIG_NOTE = "Use pod logs to view the configuration"


def is_mirror_pod(pod: Unstructured) -> bool:
    return MIRROR_POD_ANNOTATION in pod.annotations


def is_daemonset_pod(pod: Unstructured) -> bool:
    return any(ref.get("kind") == "DaemonSet" for ref in pod.get("metadata", "ownerReferences") or [])


def uses_local_storage(pod: Unstructured) -> bool:
    return any("emptyDir" in (volume or {}) for volume in pod.get("spec", "volumes") or [])


def is_kube_proxy(pod: Unstructured) -> bool:
    labels = pod.labels
    return any(labels.get(key) == value for key, value in KUBE_PROXY_LABELS)


def plan_drain(pods: List[Dict[str, Any]], options: DrainRequest) -> Tuple[List[Unstructured], List[str]]:
    """Split the node's pods into pods to evict and reasons the drain cannot proceed."""
    to_evict: List[Unstructured] = []
    blockers: List[str] = []
    for raw in pods:
        pod = Unstructured(raw)
        ref = f"{pod.namespace}/{pod.name}"
        if is_mirror_pod(pod):
            continue
        if is_daemonset_pod(pod):
            if not options.ignore_daemonsets:
                blockers.append(f"{ref} is managed by a DaemonSet")
            continue
        if uses_local_storage(pod) and not options.delete_local_data:
            blockers.append(f"{ref} uses emptyDir local storage")
            continue
        if not pod.get("metadata", "ownerReferences") and not options.force:
            blockers.append(f"{ref} is not managed by a controller")
            continue
        to_evict.append(pod)
    return to_evict, blockers


class NodeHandler(GenericResourceHandler):
    def __init__(self, client: K8sClient) -> None:
        super().__init__(client, KINDS_BY_RESOURCE["nodes"])

    @property
    def settings(self):
        return self.client.settings

    async def _set_unschedulable(self, name: str, unschedulable: bool) -> Unstructured:
        node = await self.read("", name)
        node.set(unschedulable, "spec", "unschedulable")
        return Unstructured(await self.replace("", name, node.object))

    async def cordon(self, name: str) -> Dict[str, Any]:
        await self._set_unschedulable(name, True)
        logger.info("nodes.cordoned", node=name)
        return {"message": f"Node {name} cordoned successfully"}

    async def uncordon(self, name: str) -> Dict[str, Any]:
        await self._set_unschedulable(name, False)
        logger.info("nodes.uncordoned", node=name)
        return {"message": f"Node {name} uncordoned successfully"}

    async def taint(self, name: str, request: TaintRequest) -> Dict[str, Any]:
        node = await self.read("", name)
        taint = {"key": request.key, "value": request.value, "effect": request.effect}
        taints = list(node.get("spec", "taints") or [])
        for i, existing in enumerate(taints):
            if existing.get("key") == request.key:
                taints[i] = taint
                break
        else:
            taints.append(taint)
        node.set(taints, "spec", "taints")
        try:
            await self.replace("", name, node.object)
        except KubernetesAPIError as exc:
            raise KubernetesAPIError(f"Failed to taint node: {exc.message}") from exc
        logger.info("nodes.tainted", node=name, key=request.key, effect=request.effect)
        return {"message": f"Node {name} tainted successfully", "node": node.name, "taint": taint}

    async def untaint(self, name: str, key: str) -> Dict[str, Any]:
        node = await self.read("", name)
        taints = node.get("spec", "taints") or []
        remaining = [t for t in taints if t.get("key") != key]
        if len(remaining) == len(taints):
            raise NotFoundError(f"Taint with key '{key}' not found on node")
        node.set(remaining, "spec", "taints")
        try:
            await self.replace("", name, node.object)
        except KubernetesAPIError as exc:
            raise KubernetesAPIError(f"Failed to untaint node: {exc.message}") from exc
        logger.info("nodes.untainted", node=name, key=key)
        return {
            "message": f"Taint with key '{key}' removed from node {name} successfully",
            "node": node.name,
            "removedTaintKey": key,
        }

    async def drain(self, name: str, options: DrainRequest) -> Dict[str, Any]:
        await self._set_unschedulable(name, True)
        try:
            pods = await self.client.list_core("pods", "pod", "", field_selector=f"spec.nodeName={name}")
        except ApiException as exc:
            raise KubernetesAPIError(f"Failed to list pods on node: {exc}") from exc

        to_evict, blockers = plan_drain(list(iter_items(pods)), options)
        if blockers:
            logger.warning("nodes.drain_blocked", node=name, blockers=blockers)
            raise BadRequestError(f"Cannot drain node {name}: " + "; ".join(blockers), details={"blockers": blockers})

        core = self.client.core_v1
        evicted: List[str] = []
        failed: List[Dict[str, str]] = []
        for pod in to_evict:
            ref = f"{pod.namespace}/{pod.name}"
            body: Dict[str, Any] = {
                "apiVersion": "policy/v1",
                "kind": "Eviction",
                "metadata": {"name": pod.name, "namespace": pod.namespace},
            }
            if options.grace_period is not None:
                body["deleteOptions"] = {"gracePeriodSeconds": options.grace_period}
            try:
                await self.client.call(core.create_namespaced_pod_eviction, pod.name, pod.namespace, body)
                evicted.append(ref)
                continue
            except ApiException as exc:
                if not options.force:
                    failed.append({"pod": ref, "error": str(exc)})
                    continue
                logger.warning("nodes.drain_evict_error", node=name, pod=ref, error=str(exc))
            try:
                await self.client.call(
                    core.delete_namespaced_pod, pod.name, pod.namespace, grace_period_seconds=options.grace_period
                )
                evicted.append(ref)
            except ApiException as exc:
                failed.append({"pod": ref, "error": str(exc)})

        self.client.invalidate("pods")
        logger.info("nodes.drained", node=name, evicted=len(evicted), failed=len(failed))
        return {
            "message": f"Node {name} drain initiated",
            "node": name,
            "options": options.model_dump(by_alias=True),
            "evicted": evicted,
            "failed": failed,
        }

    async def events(self, name: str) -> List[Dict[str, Any]]:
        try:
            events = await self.client.list_core("events", "event", "")
        except ApiException as exc:
            raise KubernetesAPIError(f"Failed to fetch events: {exc}") from exc
        matched = [
            e
            for e in iter_items(events)
            if (e.get("involvedObject") or {}).get("kind") == "Node" and (e.get("involvedObject") or {}).get("name") == name
        ]
        matched.sort(key=lambda e: timestamp_sort_key(e.get("lastTimestamp")), reverse=True)
        return matched

    # helper pods

    def _helper_pod(
        self,
        prefix: str,
        node: str,
        *,
        labels: Dict[str, str],
        container: Dict[str, Any],
        privileged_host: bool = False,
        volumes: Optional[List[Dict[str, Any]]] = None,
    ) -> Dict[str, Any]:
        spec: Dict[str, Any] = {
            "nodeName": node,
            "hostPID": True,
            "restartPolicy": "Never",
            "containers": [{"image": self.settings.operation_image, **container}],
            "tolerations": [{"operator": "Exists"}],
        }
        if privileged_host:
            spec["hostNetwork"] = True
        if volumes:
            spec["volumes"] = volumes
        return {
            "apiVersion": "v1",
            "kind": "Pod",
            "metadata": {
                "name": f"{prefix}-{node}-{int(time.time())}",
                "namespace": self.settings.node_operation_namespace,
                "labels": {**labels, "node": node},
            },
            "spec": spec,
        }

    async def _launch(self, pod: Dict[str, Any], error_prefix: str) -> str:
        namespace = pod["metadata"]["namespace"]
        try:
            await self.client.call(self.client.core_v1.create_namespaced_pod, namespace, pod)
        except ApiException as exc:
            raise KubernetesAPIError(f"{error_prefix}{exc}") from exc
        self.client.invalidate("pods")
        logger.info("nodes.helper_pod_created", pod=pod["metadata"]["name"], node=pod["spec"]["nodeName"])
        return pod["metadata"]["name"]

    def _host_command_pod(self, prefix: str, node: str, service: str, script: str) -> Dict[str, Any]:
        return self._helper_pod(
            prefix,
            node,
            labels={"app": "kite-node-restart", "type": service},
            container={
                "name": prefix,
                "command": [*NSENTER, "sh", "-c", script],
                "securityContext": {"privileged": True},
            },
            privileged_host=True,
        )

    async def restart_kubelet(self, name: str) -> Dict[str, Any]:
        await self.read("", name)
        pod = self._host_command_pod(
            "restart-kubelet", name, "kubelet", "systemctl stop kubelet && sleep 3 && systemctl start kubelet"
        )
        pod_name = await self._launch(pod, "Failed to create restart pod: ")
        return {"message": f"Kubelet restart initiated on node {name}", "pod": pod_name}

    async def restart_kubeproxy(self, name: str) -> Dict[str, Any]:
        await self.read("", name)
        # kube-proxy may run outside kube-system
        try:
            pods = await self.client.list_core("pods", "pod", "", field_selector=f"spec.nodeName={name}")
        except ApiException as exc:
            raise KubernetesAPIError(f"Failed to list kube-proxy pods: {exc}") from exc

        target = next((Unstructured(p) for p in iter_items(pods) if is_kube_proxy(Unstructured(p))), None)
        if target is not None:
            try:
                await self.client.call(self.client.core_v1.delete_namespaced_pod, target.name, target.namespace)
            except ApiException as exc:
                raise KubernetesAPIError(f"Failed to delete kube-proxy pod: {exc}") from exc
            self.client.invalidate("pods")
            logger.info("nodes.kubeproxy_pod_deleted", node=name, pod=target.name)
            return {"message": f"kube-proxy restart initiated on node {name}", "pod": target.name}

        # kube-proxy runs as a host service on this node
        pod = self._host_command_pod("restart-kubeproxy", name, "kube-proxy", "systemctl restart kube-proxy")
        pod_name = await self._launch(pod, "Failed to create restart pod: ")
        return {"message": f"kube-proxy restart initiated on node {name}", "pod": pod_name}

    def _config_reader_pod(self, prefix: str, node: str, kind: str, script: List[str], host_path: str) -> Dict[str, Any]:
        volume_name = "host-etc" if host_path == "/etc" else "host-cni"
        return self._helper_pod(
            prefix,
            node,
            labels={"app": "kite-node-config", "type": kind},
            container={
                "name": "read-config",
                "command": script,
                "volumeMounts": [{"name": volume_name, "mountPath": f"/host{host_path}", "readOnly": True}],
            },
            volumes=[{"name": volume_name, "hostPath": {"path": host_path}}],
        )

    async def containerd_config(self, name: str) -> Dict[str, Any]:
        await self.read("", name)
        pod = self._config_reader_pod(
            "read-containerd-config", name, "containerd", ["cat", "/host/etc/containerd/config.toml"], "/etc"
        )
        pod_name = await self._launch(pod, "Failed to create config reader pod: ")
        return {"message": "Containerd config retrieval initiated", "pod": pod_name, "note": CONFIG_NOTE}

    async def cni_config(self, name: str) -> Dict[str, Any]:
        await self.read("", name)
        script = [
            "sh",
            "-c",
            "ls -la /host/etc/cni/net.d/ && cat /host/etc/cni/net.d/*.conf* 2>/dev/null || echo 'No CNI config found'",
        ]
        pod = self._config_reader_pod("read-cni-config", name, "cni", script, "/etc/cni")
        pod_name = await self._launch(pod, "Failed to create config reader pod: ")
        return {"message": "CNI config retrieval initiated", "pod": pod_name, "note": CONFIG_NOTE}
