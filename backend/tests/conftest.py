"""
Test configuration and fixtures.

The cluster is an in-memory fake that speaks the naming convention of
the generated kubernetes client (``list_namespaced_pod``,
``read_node``, ``replace_namespaced_deployment`` ...), stores plain dict
objects and raises ``ApiException`` the way the real API server does.
"""

import copy
import itertools
import re
import uuid
from typing import Any, Dict, List, Optional, Tuple

import pytest
from fastapi.testclient import TestClient
from kubernetes.client import ApiClient
from kubernetes.client.rest import ApiException

from kite.config import Settings
from kite.dependencies import get_registry, provide_settings
from kite.handlers.registry import build_registry
from kite.kube.client import K8sClient
from kite.kube.unstructured import nested_get
from kite.main import create_app

Key = Tuple[str, str, str]

_PATTERNS = [
    ("eviction", re.compile(r"^create_namespaced_pod_eviction$")),
    ("list_all", re.compile(r"^list_(\w+)_for_all_namespaces$")),
    ("list_ns", re.compile(r"^list_namespaced_(\w+)$")),
    ("list", re.compile(r"^list_(\w+)$")),
    ("read_ns", re.compile(r"^read_namespaced_(\w+)$")),
    ("read", re.compile(r"^read_(\w+)$")),
    ("create_ns", re.compile(r"^create_namespaced_(\w+)$")),
    ("create", re.compile(r"^create_(\w+)$")),
    ("replace_ns", re.compile(r"^replace_namespaced_(\w+)$")),
    ("replace", re.compile(r"^replace_(\w+)$")),
    ("delete_ns", re.compile(r"^delete_namespaced_(\w+)$")),
    ("delete", re.compile(r"^delete_(\w+)$")),
]


def _not_found(kind: str, name: str) -> ApiException:
    return ApiException(status=404, reason=f'{kind} "{name}" not found')


def _matches_selector(obj: Dict[str, Any], selector: Optional[str], labels: bool) -> bool:
    if not selector:
        return True
    for term in selector.split(","):
        key, _, value = term.partition("=")
        if labels:
            actual = (nested_get(obj, "metadata", "labels") or {}).get(key)
        else:
            actual = nested_get(obj, *key.split("."))
        if actual != value:
            return False
    return True


class FakeCluster:
    """Objects keyed by (stem, namespace, name); cluster-scoped objects use namespace ""."""

    def __init__(self) -> None:
        self.objects: Dict[Key, Dict[str, Any]] = {}
        self.calls: List[Tuple[str, tuple, dict]] = []
        self.failures: Dict[Tuple[str, Optional[str]], ApiException] = {}
        self._rv = itertools.count(100)

    # seeding and inspection

    def add(self, stem: str, obj: Dict[str, Any]) -> Dict[str, Any]:
        obj = copy.deepcopy(obj)
        meta = obj.setdefault("metadata", {})
        meta.setdefault("uid", str(uuid.uuid4()))
        meta.setdefault("resourceVersion", str(next(self._rv)))
        meta.setdefault("creationTimestamp", "2024-05-01T10:00:00Z")
        self.objects[(stem, meta.get("namespace", ""), meta["name"])] = obj
        return obj

    def get(self, stem: str, namespace: str, name: str) -> Optional[Dict[str, Any]]:
        return self.objects.get((stem, namespace, name))

    def all(self, stem: str) -> List[Dict[str, Any]]:
        return [obj for (s, _, _), obj in self.objects.items() if s == stem]

    def fail(self, method: str, status: int = 500, name: Optional[str] = None, reason: str = "Internal Server Error") -> None:
        self.failures[(method, name)] = ApiException(status=status, reason=reason)

    def called(self, method: str) -> List[Tuple[tuple, dict]]:
        return [(args, kwargs) for m, args, kwargs in self.calls if m == method]

    # API groups

    def api(self, name: str) -> Any:
        if name == "CustomObjectsApi":
            return FakeCustomObjectsApi(self)
        return FakeApi(self, name)

    def _check_failure(self, method: str, name: Optional[str]) -> None:
        exc = self.failures.get((method, name)) or self.failures.get((method, None))
        if exc is not None:
            raise exc

    def _write(self, key: Key, body: Dict[str, Any], *, existing: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        obj = copy.deepcopy(body)
        meta = obj.setdefault("metadata", {})
        if existing is not None:
            sent = meta.get("resourceVersion")
            current = existing["metadata"]["resourceVersion"]
            if sent and sent != current:
                raise ApiException(status=409, reason="Conflict: the object has been modified")
            meta["uid"] = existing["metadata"]["uid"]
            meta["creationTimestamp"] = existing["metadata"].get("creationTimestamp")
        else:
            meta.setdefault("uid", str(uuid.uuid4()))
            meta.setdefault("creationTimestamp", "2024-05-01T10:00:00Z")
        meta["resourceVersion"] = str(next(self._rv))
        self.objects[key] = obj
        return copy.deepcopy(obj)

    def _list(self, stem: str, namespace: Optional[str], **kwargs: Any) -> Dict[str, Any]:
        items = [
            copy.deepcopy(obj)
            for (s, ns, _), obj in sorted(self.objects.items())
            if s == stem
            and (namespace is None or ns == namespace)
            and _matches_selector(obj, kwargs.get("field_selector"), labels=False)
            and _matches_selector(obj, kwargs.get("label_selector"), labels=True)
        ]
        limit = kwargs.get("limit")
        if limit:
            items = items[:limit]
        return {"apiVersion": "v1", "kind": "List", "metadata": {}, "items": items}

    def dispatch(self, method: str, args: tuple, kwargs: dict) -> Any:
        self.calls.append((method, args, kwargs))
        for op, pattern in _PATTERNS:
            match = pattern.match(method)
            if match:
                break
        else:
            raise AttributeError(method)
        stem = match.group(1) if match.groups() else "pod"

        if op == "eviction":
            name, namespace, _body = args
            self._check_failure(method, name)
            if self.objects.pop(("pod", namespace, name), None) is None:
                raise _not_found("pods", name)
            return {"kind": "Status", "status": "Success"}
        if op in ("list_all", "list"):
            self._check_failure(method, None)
            return self._list(stem, None, **kwargs)
        if op == "list_ns":
            self._check_failure(method, None)
            return self._list(stem, args[0], **kwargs)

        if op in ("read_ns", "read"):
            name, namespace = (args[0], args[1]) if op == "read_ns" else (args[0], "")
            self._check_failure(method, name)
            obj = self.objects.get((stem, namespace, name))
            if obj is None:
                raise _not_found(stem, name)
            return copy.deepcopy(obj)

        if op in ("create_ns", "create"):
            namespace, body = (args[0], args[1]) if op == "create_ns" else ("", args[0])
            name = body["metadata"]["name"]
            self._check_failure(method, name)
            if (stem, namespace, name) in self.objects:
                raise ApiException(status=409, reason="AlreadyExists")
            return self._write((stem, namespace, name), body)

        if op in ("replace_ns", "replace"):
            name, namespace, body = (args[0], args[1], args[2]) if op == "replace_ns" else (args[0], "", args[1])
            self._check_failure(method, name)
            existing = self.objects.get((stem, namespace, name))
            if existing is None:
                raise _not_found(stem, name)
            return self._write((stem, namespace, name), body, existing=existing)

        name, namespace = (args[0], args[1]) if op == "delete_ns" else (args[0], "")
        self._check_failure(method, name)
        if self.objects.pop((stem, namespace, name), None) is None:
            raise _not_found(stem, name)
        return {"kind": "Status", "status": "Success"}


class FakeApi:
    def __init__(self, cluster: FakeCluster, group: str) -> None:
        self._cluster = cluster
        self.group = group

    def __getattr__(self, method: str):
        if method.startswith("_"):
            raise AttributeError(method)

        def _call(*args: Any, **kwargs: Any) -> Any:
            return self._cluster.dispatch(method, args, kwargs)

        return _call


class FakeCustomObjectsApi:
    """Custom objects are stored under the stem ``<plural>.<group>``."""

    def __init__(self, cluster: FakeCluster) -> None:
        self._cluster = cluster

    def _stem(self, group: str, plural: str) -> str:
        return f"{plural}.{group}"

    def list_namespaced_custom_object(self, group, version, namespace, plural, **kwargs):
        self._cluster.calls.append(("list_namespaced_custom_object", (group, version, namespace, plural), kwargs))
        return self._cluster._list(self._stem(group, plural), namespace)

    def list_cluster_custom_object(self, group, version, plural, **kwargs):
        self._cluster.calls.append(("list_cluster_custom_object", (group, version, plural), kwargs))
        return self._cluster._list(self._stem(group, plural), None)

    def get_namespaced_custom_object(self, group, version, namespace, plural, name):
        return self._get("get_namespaced_custom_object", group, plural, namespace, name)

    def get_cluster_custom_object(self, group, version, plural, name):
        return self._get("get_cluster_custom_object", group, plural, "", name)

    def _get(self, method, group, plural, namespace, name):
        self._cluster.calls.append((method, (group, plural, namespace, name), {}))
        self._cluster._check_failure(method, name)
        obj = self._cluster.get(self._stem(group, plural), namespace, name)
        if obj is None:
            raise _not_found(plural, name)
        return copy.deepcopy(obj)

    def create_namespaced_custom_object(self, group, version, namespace, plural, body):
        return self._cluster._write((self._stem(group, plural), namespace, body["metadata"]["name"]), body)

    def create_cluster_custom_object(self, group, version, plural, body):
        return self._cluster._write((self._stem(group, plural), "", body["metadata"]["name"]), body)

    def replace_namespaced_custom_object(self, group, version, namespace, plural, name, body):
        return self._replace("replace_namespaced_custom_object", group, plural, namespace, name, body)

    def replace_cluster_custom_object(self, group, version, plural, name, body):
        return self._replace("replace_cluster_custom_object", group, plural, "", name, body)

    def _replace(self, method, group, plural, namespace, name, body):
        self._cluster.calls.append((method, (group, plural, namespace, name), {}))
        self._cluster._check_failure(method, name)
        key = (self._stem(group, plural), namespace, name)
        existing = self._cluster.objects.get(key)
        if existing is None:
            raise _not_found(plural, name)
        return self._cluster._write(key, body, existing=existing)

    def delete_namespaced_custom_object(self, group, version, namespace, plural, name, **kwargs):
        return self._delete("delete_namespaced_custom_object", group, plural, namespace, name, kwargs)

    def delete_cluster_custom_object(self, group, version, plural, name, **kwargs):
        return self._delete("delete_cluster_custom_object", group, plural, "", name, kwargs)

    def _delete(self, method, group, plural, namespace, name, kwargs):
        self._cluster.calls.append((method, (group, plural, namespace, name), kwargs))
        if self._cluster.objects.pop((self._stem(group, plural), namespace, name), None) is None:
            raise _not_found(plural, name)
        return {"kind": "Status", "status": "Success"}


class FakeK8sClient(K8sClient):
    def __init__(self, cluster: FakeCluster, settings: Settings) -> None:
        super().__init__(settings=settings, api_client=ApiClient())
        self.cluster = cluster

    def api(self, name: str) -> Any:
        return self.cluster.api(name)


# object builders


def make_crd(plural: str, group: str, kind: str, scope: str = "Namespaced", versions=None) -> Dict[str, Any]:
    return {
        "apiVersion": "apiextensions.k8s.io/v1",
        "kind": "CustomResourceDefinition",
        "metadata": {"name": f"{plural}.{group}"},
        "spec": {
            "group": group,
            "scope": scope,
            "names": {"plural": plural, "kind": kind, "listKind": f"{kind}List", "singular": kind.lower()},
            "versions": versions
            or [{"name": "v1", "served": True, "storage": True}],
        },
    }


def make_pod(name: str, namespace: str = "default", *, labels=None, node: str = "node-1", owners=True, **extra) -> Dict[str, Any]:
    meta: Dict[str, Any] = {"name": name, "namespace": namespace, "labels": labels or {}}
    if owners:
        meta["ownerReferences"] = [{"kind": "ReplicaSet", "name": f"{name}-rs", "uid": "rs-uid", "apiVersion": "apps/v1"}]
    pod = {
        "apiVersion": "v1",
        "kind": "Pod",
        "metadata": meta,
        "spec": {"nodeName": node, "containers": [{"name": "app", "image": "nginx"}]},
        "status": {"phase": "Running"},
    }
    for key, value in extra.items():
        pod[key] = value
    return pod


def make_deployment(name: str, namespace: str = "default", replicas: int = 1, match_labels=None) -> Dict[str, Any]:
    labels = match_labels or {"app": name}
    return {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": {"name": name, "namespace": namespace, "labels": labels},
        "spec": {
            "replicas": replicas,
            "selector": {"matchLabels": labels},
            "template": {"metadata": {"labels": labels}, "spec": {"containers": [{"name": "app", "image": "nginx"}]}},
        },
    }


def make_service(name: str, namespace: str = "default", selector=None) -> Dict[str, Any]:
    spec: Dict[str, Any] = {"ports": [{"port": 80}]}
    if selector is not None:
        spec["selector"] = selector
    return {"apiVersion": "v1", "kind": "Service", "metadata": {"name": name, "namespace": namespace}, "spec": spec}


def make_node(name: str, *, taints=None, unschedulable: bool = False) -> Dict[str, Any]:
    spec: Dict[str, Any] = {}
    if taints is not None:
        spec["taints"] = taints
    if unschedulable:
        spec["unschedulable"] = True
    return {"apiVersion": "v1", "kind": "Node", "metadata": {"name": name}, "spec": spec}


def make_event(name: str, namespace: str, *, kind: str, obj_name: str, reason: str = "Normal", message: str = "", **times) -> Dict[str, Any]:
    return {
        "apiVersion": "v1",
        "kind": "Event",
        "metadata": {"name": name, "namespace": namespace, "creationTimestamp": times.get("created", "2024-05-01T10:00:00Z")},
        "involvedObject": {"kind": kind, "name": obj_name, "namespace": namespace},
        "reason": reason,
        "message": message,
        "lastTimestamp": times.get("last", "2024-05-01T10:00:00Z"),
    }


# fixtures


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        app_env="test",
        disable_cache=True,
        rate_limit_requests_per_minute=0,
        request_timeout_seconds=5,
        batch_timeout_seconds=5,
        scale_restart_timeout_seconds=5,
    )


@pytest.fixture
def cluster() -> FakeCluster:
    return FakeCluster()


@pytest.fixture
def k8s(cluster, settings) -> FakeK8sClient:
    return FakeK8sClient(cluster, settings)


@pytest.fixture
def registry(k8s):
    registry = build_registry(k8s)
    registry.deployments.scale_up_settle_seconds = 0
    registry.deployments.restart_settle_seconds = 0
    return registry


@pytest.fixture
def app(registry, settings):
    app = create_app()
    app.dependency_overrides[get_registry] = lambda: registry
    app.dependency_overrides[provide_settings] = lambda: settings
    return app


@pytest.fixture
def api(app):
    with TestClient(app) as client:
        yield client
