from dataclasses import dataclass
from typing import Dict, Tuple


@dataclass(frozen=True)
class ResourceKind:
    """How one built-in resource maps onto the typed client.

    ``stem`` is the snake-case suffix of the client methods, e.g.
    ``stateful_set`` for ``list_namespaced_stateful_set``.
    """

    resource: str
    api: str
    stem: str
    kind: str
    cluster_scoped: bool = False


BUILTIN_KINDS: Tuple[ResourceKind, ...] = (
    # workloads
    ResourceKind("pods", "CoreV1Api", "pod", "Pod"),
    ResourceKind("deployments", "AppsV1Api", "deployment", "Deployment"),
    ResourceKind("statefulsets", "AppsV1Api", "stateful_set", "StatefulSet"),
    ResourceKind("daemonsets", "AppsV1Api", "daemon_set", "DaemonSet"),
    ResourceKind("replicasets", "AppsV1Api", "replica_set", "ReplicaSet"),
    ResourceKind("jobs", "BatchV1Api", "job", "Job"),
    ResourceKind("cronjobs", "BatchV1Api", "cron_job", "CronJob"),
    # network and config
    ResourceKind("services", "CoreV1Api", "service", "Service"),
    ResourceKind("endpoints", "CoreV1Api", "endpoints", "Endpoints"),
    ResourceKind("configmaps", "CoreV1Api", "config_map", "ConfigMap"),
    ResourceKind("secrets", "CoreV1Api", "secret", "Secret"),
    ResourceKind("ingresses", "NetworkingV1Api", "ingress", "Ingress"),
    ResourceKind("networkpolicies", "NetworkingV1Api", "network_policy", "NetworkPolicy"),
    ResourceKind("serviceaccounts", "CoreV1Api", "service_account", "ServiceAccount"),
    ResourceKind("events", "CoreV1Api", "event", "Event"),
    # storage, rbac, policy
    ResourceKind("persistentvolumeclaims", "CoreV1Api", "persistent_volume_claim", "PersistentVolumeClaim"),
    ResourceKind("roles", "RbacAuthorizationV1Api", "role", "Role"),
    ResourceKind("rolebindings", "RbacAuthorizationV1Api", "role_binding", "RoleBinding"),
    ResourceKind("horizontalpodautoscalers", "AutoscalingV2Api", "horizontal_pod_autoscaler", "HorizontalPodAutoscaler"),
    ResourceKind("poddisruptionbudgets", "PolicyV1Api", "pod_disruption_budget", "PodDisruptionBudget"),
    ResourceKind("resourcequotas", "CoreV1Api", "resource_quota", "ResourceQuota"),
    ResourceKind("limitranges", "CoreV1Api", "limit_range", "LimitRange"),
    # cluster-scoped
    ResourceKind("namespaces", "CoreV1Api", "namespace", "Namespace", cluster_scoped=True),
    ResourceKind("nodes", "CoreV1Api", "node", "Node", cluster_scoped=True),
    ResourceKind("persistentvolumes", "CoreV1Api", "persistent_volume", "PersistentVolume", cluster_scoped=True),
    ResourceKind("storageclasses", "StorageV1Api", "storage_class", "StorageClass", cluster_scoped=True),
    ResourceKind("clusterroles", "RbacAuthorizationV1Api", "cluster_role", "ClusterRole", cluster_scoped=True),
    ResourceKind(
        "clusterrolebindings", "RbacAuthorizationV1Api", "cluster_role_binding", "ClusterRoleBinding", cluster_scoped=True
    ),
    ResourceKind(
        "customresourcedefinitions",
        "ApiextensionsV1Api",
        "custom_resource_definition",
        "CustomResourceDefinition",
        cluster_scoped=True,
    ),
)

KINDS_BY_RESOURCE: Dict[str, ResourceKind] = {kind.resource: kind for kind in BUILTIN_KINDS}
