"""
Pod history derived from the pod object and its events.

Everything here is a pure function over plain dicts (the serialized
pod and event objects) so it can be exercised without a cluster.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from kite.kube.unstructured import nested_get
from kite.schemas.kubernetes import (
    ContainerRestartInfo,
    NodeHistoryEntry,
    PodHistory,
    PodStatusInfo,
    RestartHistoryEntry,
)

MAX_NODE_HISTORY = 5
RESTART_EVENT_REASONS = frozenset({"BackOff", "Killing", "Unhealthy", "FailedPostStartHook"})
WAITING_ERROR_REASONS = frozenset({"ImagePullBackOff", "ErrImagePull", "CrashLoopBackOff", "CreateContainerConfigError"})

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def parse_time(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def timestamp_sort_key(value: Any) -> datetime:
    return parse_time(value) or _EPOCH


def extract_node_from_scheduled_message(message: str) -> str:
    """``"Successfully assigned default/web-0 to node-1"`` -> ``"node-1"``."""
    end = len(message)
    while True:
        idx = message.rfind(" to ", 0, end)
        if idx < 0:
            return ""
        if idx + 4 < len(message):
            return message[idx + 4 :]
        end = idx + 3


def sort_events_newest_first(events: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return sorted(events, key=lambda e: timestamp_sort_key(nested_get(e, "metadata", "creationTimestamp")), reverse=True)


def build_node_history(pod: Dict[str, Any], events: List[Dict[str, Any]]) -> List[NodeHistoryEntry]:
    history: List[NodeHistoryEntry] = []
    seen: set[str] = set()

    current = nested_get(pod, "spec", "nodeName")
    if current:
        history.append(
            NodeHistoryEntry(
                node_name=current,
                start_time=nested_get(pod, "metadata", "creationTimestamp"),
                reason="Scheduled",
                phase=nested_get(pod, "status", "phase", default="") or "",
            )
        )
        seen.add(current)

    for event in events:
        reason = event.get("reason")
        created = nested_get(event, "metadata", "creationTimestamp")
        if reason == "Scheduled" and event.get("message"):
            node = extract_node_from_scheduled_message(event["message"])
            if node and node not in seen:
                history.append(NodeHistoryEntry(node_name=node, start_time=created, reason=reason, phase="Pending"))
                seen.add(node)
        elif reason == "FailedScheduling":
            history.append(NodeHistoryEntry(node_name="none", start_time=created, reason=reason, phase="Pending"))

    history.sort(key=lambda entry: timestamp_sort_key(entry.start_time), reverse=True)
    return history[:MAX_NODE_HISTORY]


def restart_events(events: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [e for e in events if e.get("reason") in RESTART_EVENT_REASONS]


def build_restart_history(pod: Dict[str, Any], events: List[Dict[str, Any]]) -> List[RestartHistoryEntry]:
    containers: List[ContainerRestartInfo] = []
    total = 0
    for status in nested_get(pod, "status", "containerStatuses") or []:
        info = ContainerRestartInfo(container_name=status.get("name", ""), restart_count=status.get("restartCount") or 0)
        terminated = nested_get(status, "lastState", "terminated")
        if terminated:
            info.last_restart_time = terminated.get("finishedAt")
            info.exit_code = terminated.get("exitCode")
            info.reason = terminated.get("reason") or ""
            info.message = terminated.get("message") or ""
        containers.append(info)
        total += info.restart_count

    if total == 0:
        return []

    entry = RestartHistoryEntry(restart_count=total, container_states=containers, events=restart_events(events))
    latest: Optional[datetime] = None
    for info in containers:
        finished = parse_time(info.last_restart_time)
        if finished is not None and (latest is None or finished > latest):
            latest = finished
            entry.last_restart_time = info.last_restart_time
            entry.reason = info.reason
            entry.message = info.message
            entry.exit_code = info.exit_code
    return [entry]


def is_pod_ready(pod: Dict[str, Any]) -> bool:
    for condition in nested_get(pod, "status", "conditions") or []:
        if condition.get("type") == "Ready":
            return condition.get("status") == "True"
    return False


def pod_error_info(pod: Dict[str, Any]) -> Tuple[bool, str]:
    status = pod.get("status") or {}
    if status.get("phase") == "Failed":
        return True, status.get("message") or ""

    for container in status.get("containerStatuses") or []:
        name = container.get("name", "")
        waiting = nested_get(container, "state", "waiting")
        if waiting and waiting.get("reason") in WAITING_ERROR_REASONS:
            return True, f"Container {name}: {waiting['reason']} - {waiting.get('message') or ''}"
        terminated = nested_get(container, "state", "terminated")
        if terminated and (terminated.get("exitCode") or 0) != 0:
            return True, f"Container {name} exited with code {terminated['exitCode']}: {terminated.get('message') or ''}"

    for condition in status.get("conditions") or []:
        if condition.get("status") != "False":
            continue
        message = condition.get("message") or ""
        kind = condition.get("type")
        if kind == "PodScheduled" and condition.get("reason") == "Unschedulable":
            return True, f"Scheduling failed: {message}"
        if kind == "Initialized":
            return True, f"Initialization failed: {message}"
        if kind == "Ready":
            return True, f"Pod not ready: {message}"
    return False, ""


def build_status_info(pod: Dict[str, Any]) -> PodStatusInfo:
    status = pod.get("status") or {}
    has_errors, error_message = pod_error_info(pod)
    return PodStatusInfo(
        phase=status.get("phase") or "",
        conditions=status.get("conditions") or [],
        container_statuses=status.get("containerStatuses") or [],
        is_ready=is_pod_ready(pod),
        has_errors=has_errors,
        error_message=error_message or None,
        qos_class=status.get("qosClass") or "",
        start_time=status.get("startTime"),
    )


def build_pod_history(pod: Dict[str, Any], events: List[Dict[str, Any]]) -> PodHistory:
    events = sort_events_newest_first(events)
    return PodHistory(
        pod_name=nested_get(pod, "metadata", "name", default=""),
        namespace=nested_get(pod, "metadata", "namespace", default=""),
        current_node=nested_get(pod, "spec", "nodeName", default="") or "",
        node_history=build_node_history(pod, events),
        restart_history=build_restart_history(pod, events),
        events=events,
        status=build_status_info(pod),
    )
