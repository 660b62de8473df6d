from __future__ import annotations

import asyncio
import os
import threading
from collections.abc import Awaitable, Callable
from typing import Any, Dict, TypeVar

import structlog
from cachetools import TTLCache
from kubernetes import client, config
from kubernetes.client import ApiClient
from kubernetes.config.config_exception import ConfigException

from kite.config import Settings, get_settings
from kite.core.rate_limiter import RateLimiter

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class K8sClient:
    """Shared handle on one cluster.

    Resolves the connection lazily (explicit kubeconfig, then in-cluster
    service account, then ~/.kube/config), hands out typed API groups by
    class name, and runs every blocking call on a worker thread.

    List reads may be served from a short-lived TTL cache keyed by
    resource and namespace; every write through :meth:`invalidate` drops
    the cached lists of the written resource.
    """

    def __init__(self, settings: Settings | None = None, api_client: ApiClient | None = None) -> None:
        self.settings = settings or get_settings()
        self._api_client = api_client
        self._apis: dict[str, Any] = {}
        self._connect_lock = threading.Lock()
        self._cache: TTLCache | None = None
        if not self.settings.disable_cache and self.settings.cache_ttl_seconds > 0:
            self._cache = TTLCache(maxsize=256, ttl=self.settings.cache_ttl_seconds)
        self._cache_lock = threading.Lock()
        self._rate_limiter: RateLimiter | None = None
        if self.settings.rate_limit_requests_per_minute > 0:
            self._rate_limiter = RateLimiter(self.settings.rate_limit_requests_per_minute)

    @property
    def api_client(self) -> ApiClient:
        if self._api_client is None:
            with self._connect_lock:
                if self._api_client is None:
                    self._api_client = self._connect()
        return self._api_client

    def api(self, name: str) -> Any:
        """Return the typed API group ``kubernetes.client.<name>`` bound to this cluster."""
        api = self._apis.get(name)
        if api is None:
            api = getattr(client, name)(self.api_client)
            self._apis[name] = api
        return api

    @property
    def core_v1(self) -> client.CoreV1Api:
        return self.api("CoreV1Api")

    @property
    def custom_objects(self) -> client.CustomObjectsApi:
        return self.api("CustomObjectsApi")

    @property
    def apiextensions_v1(self) -> client.ApiextensionsV1Api:
        return self.api("ApiextensionsV1Api")

    async def call(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run a blocking client call off the event loop."""
        if self._rate_limiter is not None:
            await self._rate_limiter.acquire()
        return await asyncio.to_thread(fn, *args, **kwargs)

    async def cached_list(self, key: str, fetcher: Callable[[], Awaitable[T]]) -> T:
        if self._cache is None:
            return await fetcher()
        with self._cache_lock:
            if key in self._cache:
                return self._cache[key]
        result = await fetcher()
        with self._cache_lock:
            self._cache[key] = result
        return result

    async def list_core(self, resource: str, stem: str, namespace: str = "", **kwargs: Any) -> Dict[str, Any]:
        """List a CoreV1 kind as plain dicts, e.g. ``list_core("pods", "pod", "default")``.

        Unfiltered lists go through the read cache; selector queries do not.
        """
        api = self.core_v1

        async def _fetch() -> Dict[str, Any]:
            if namespace:
                result = await self.call(getattr(api, f"list_namespaced_{stem}"), namespace, **kwargs)
            else:
                result = await self.call(getattr(api, f"list_{stem}_for_all_namespaces"), **kwargs)
            return self.serialize(result)

        if kwargs:
            return await _fetch()
        return await self.cached_list(f"{resource}:{namespace or '_all'}", _fetch)

    def invalidate(self, resource: str) -> None:
        if self._cache is None:
            return
        prefix = f"{resource}:"
        with self._cache_lock:
            for key in [k for k in self._cache.keys() if k.startswith(prefix)]:
                self._cache.pop(key, None)

    def serialize(self, obj: Any) -> Any:
        """Turn client model objects into plain JSON-compatible data."""
        return self.api_client.sanitize_for_serialization(obj)

    def close(self) -> None:
        if self._api_client is not None:
            try:
                self._api_client.close()
            except Exception as exc:  # pragma: no cover
                logger.warning("kubernetes.close_error", error=str(exc))

    def _connect(self) -> ApiClient:
        kubeconfig = self.settings.kubeconfig or os.environ.get("KUBECONFIG")
        if kubeconfig:
            loaded = config.new_client_from_config(config_file=kubeconfig, context=self.settings.kube_context)
            logger.info("kubernetes.config_loaded", source="kubeconfig", path=kubeconfig, context=self.settings.kube_context)
            return loaded

        try:
            config.load_incluster_config()
            logger.info("kubernetes.config_loaded", source="in-cluster")
            return ApiClient()
        except ConfigException:
            pass

        loaded = config.new_client_from_config(context=self.settings.kube_context)
        logger.info("kubernetes.config_loaded", source="default-kubeconfig", context=self.settings.kube_context)
        return loaded
