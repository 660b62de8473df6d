from functools import lru_cache

from kite.config import Settings, get_settings
from kite.handlers.registry import HandlerRegistry, build_registry
from kite.kube.client import K8sClient


@lru_cache(maxsize=1)
def _get_k8s_client() -> K8sClient:
    return K8sClient(get_settings())


@lru_cache(maxsize=1)
def _get_registry() -> HandlerRegistry:
    return build_registry(_get_k8s_client())


def get_registry() -> HandlerRegistry:
    return _get_registry()


def provide_settings() -> Settings:
    return get_settings()


def shutdown_clients() -> None:
    if _get_k8s_client.cache_info().currsize:
        _get_k8s_client().close()
    _get_registry.cache_clear()
    _get_k8s_client.cache_clear()
