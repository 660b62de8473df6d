"""
Helpers for Kubernetes objects held as plain nested dicts.

Custom resources come back from ``CustomObjectsApi`` as JSON documents
with no typed model; built-in objects are turned into the same shape by
``K8sClient.serialize``. ``Unstructured`` gives both a small accessor
surface over nested paths.
"""

from __future__ import annotations

import copy
from collections.abc import Mapping
from typing import Any, Dict, Iterable, Optional, Tuple

_MISSING = object()


def nested_get(obj: Mapping[str, Any], *path: str, default: Any = None) -> Any:
    current: Any = obj
    for key in path:
        if not isinstance(current, Mapping):
            return default
        current = current.get(key, _MISSING)
        if current is _MISSING:
            return default
    return current


def nested_set(obj: Dict[str, Any], value: Any, *path: str) -> None:
    """Set ``obj[path[0]]...[path[-1]] = value``, creating (or replacing non-dict) parents."""
    if not path:
        raise ValueError("path must not be empty")
    current = obj
    for key in path[:-1]:
        child = current.get(key)
        if not isinstance(child, dict):
            child = {}
            current[key] = child
        current = child
    current[path[-1]] = value


class Unstructured:
    """Thin wrapper over an object dict; mutations write through to ``.object``."""

    def __init__(self, obj: Optional[Dict[str, Any]] = None) -> None:
        self.object: Dict[str, Any] = obj if obj is not None else {}

    @classmethod
    def copy_of(cls, obj: Mapping[str, Any]) -> "Unstructured":
        return cls(copy.deepcopy(dict(obj)))

    def get(self, *path: str, default: Any = None) -> Any:
        return nested_get(self.object, *path, default=default)

    def set(self, value: Any, *path: str) -> None:
        nested_set(self.object, value, *path)

    @property
    def api_version(self) -> str:
        return self.object.get("apiVersion") or ""

    @property
    def kind(self) -> str:
        return self.object.get("kind") or ""

    @property
    def name(self) -> str:
        return self.get("metadata", "name", default="") or ""

    @name.setter
    def name(self, value: str) -> None:
        self.set(value, "metadata", "name")

    @property
    def namespace(self) -> str:
        return self.get("metadata", "namespace", default="") or ""

    @namespace.setter
    def namespace(self, value: str) -> None:
        self.set(value, "metadata", "namespace")

    @property
    def resource_version(self) -> str:
        return self.get("metadata", "resourceVersion", default="") or ""

    @property
    def uid(self) -> str:
        return self.get("metadata", "uid", default="") or ""

    @property
    def labels(self) -> Dict[str, str]:
        return dict(self.get("metadata", "labels") or {})

    @property
    def annotations(self) -> Dict[str, str]:
        return dict(self.get("metadata", "annotations") or {})

    def set_annotation(self, key: str, value: str) -> None:
        annotations = self.get("metadata", "annotations")
        if not isinstance(annotations, dict):
            annotations = {}
            self.set(annotations, "metadata", "annotations")
        annotations[key] = value

    def __repr__(self) -> str:
        return f"Unstructured(kind={self.kind!r}, namespace={self.namespace!r}, name={self.name!r})"


COMMON_LABEL_KEYS: Tuple[str, ...] = ("app", "component", "name", "instance")


def labels_match_any(resource_labels: Mapping[str, str], candidate_labels: Mapping[str, str]) -> bool:
    """Best-effort relation test used for related-resource discovery.

    A candidate is related when it shares at least one label key/value
    with the resource, or agrees on one of ``COMMON_LABEL_KEYS``.
    """
    if not resource_labels or not candidate_labels:
        return False
    for key, value in resource_labels.items():
        if candidate_labels.get(key) == value:
            return True
    return any(
        key in resource_labels and candidate_labels.get(key) == resource_labels[key]
        for key in COMMON_LABEL_KEYS
    )


def selector_matches(selector: Optional[Mapping[str, str]], labels: Mapping[str, str]) -> bool:
    """A non-empty equality selector matches when every pair appears in ``labels``."""
    if not selector:
        return False
    return all(labels.get(key) == value for key, value in selector.items())


def iter_items(list_obj: Any) -> Iterable[Dict[str, Any]]:
    if isinstance(list_obj, Mapping):
        return list_obj.get("items") or []
    return []
