from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ResourceIdentifier(BaseModel):
    namespace: str = Field(min_length=1)
    name: str = Field(min_length=1)


class ScaleRequest(BaseModel):
    replicas: int = Field(ge=0, strict=True)


class BatchPodRestartRequest(BaseModel):
    pods: list[ResourceIdentifier]


class BatchDeploymentRestartRequest(BaseModel):
    deployments: list[ResourceIdentifier]


class ScaleRestartRequest(CamelModel):
    deployments: list[ResourceIdentifier]
    final_replicas: int | None = Field(default=None, ge=0)


class RestartResult(BaseModel):
    namespace: str
    name: str
    success: bool
    error: str | None = None


class BatchOperationResponse(BaseModel):
    message: str
    total: int
    successful: int
    failed: int
    results: list[RestartResult]
    timestamp: str


class OperationResult(BaseModel):
    message: str


class TaintRequest(BaseModel):
    key: str = Field(min_length=1)
    value: str = ""
    effect: Literal["NoSchedule", "PreferNoSchedule", "NoExecute"]


class UntaintRequest(BaseModel):
    key: str = Field(min_length=1)


class DrainRequest(CamelModel):
    force: bool = False
    grace_period: int | None = Field(default=None, ge=0, description="Seconds; the pod's own grace period when unset")
    delete_local_data: bool = False
    ignore_daemonsets: bool = True


class NodeJobResult(BaseModel):
    """Handle on a fire-and-forget node maintenance pod."""

    message: str
    pod: str
    note: str | None = None


# Pod history


class NodeHistoryEntry(CamelModel):
    node_name: str
    start_time: str | None = None
    end_time: str | None = None
    reason: str
    phase: str


class ContainerRestartInfo(CamelModel):
    container_name: str
    restart_count: int = 0
    last_restart_time: str | None = None
    exit_code: int | None = None
    reason: str = ""
    message: str = ""


class RestartHistoryEntry(CamelModel):
    restart_count: int
    last_restart_time: str | None = None
    reason: str = ""
    exit_code: int | None = None
    message: str = ""
    container_states: list[ContainerRestartInfo] = Field(default_factory=list)
    events: list[dict[str, Any]] = Field(default_factory=list)


class PodStatusInfo(CamelModel):
    phase: str = ""
    conditions: list[dict[str, Any]] = Field(default_factory=list)
    container_statuses: list[dict[str, Any]] = Field(default_factory=list)
    is_ready: bool = False
    has_errors: bool = False
    error_message: str | None = None
    qos_class: str = ""
    start_time: str | None = None


class PodHistory(CamelModel):
    pod_name: str
    namespace: str
    current_node: str = ""
    node_history: list[NodeHistoryEntry] = Field(default_factory=list)
    restart_history: list[RestartHistoryEntry] = Field(default_factory=list)
    events: list[dict[str, Any]] = Field(default_factory=list)
    status: PodStatusInfo


class PodHistoryBatch(BaseModel):
    histories: list[PodHistory]
    total: int
