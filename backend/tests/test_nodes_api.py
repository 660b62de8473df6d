"""
API tests for node maintenance operations.
"""

import pytest

from conftest import make_event, make_node, make_pod

pytestmark = pytest.mark.api

BASE = "/api/v1/nodes/_all"


def _error(resp):
    return resp.json()["error"]["message"]


@pytest.fixture
def node(cluster):
    return cluster.add("node", make_node("node-1", taints=[{"key": "dedicated", "value": "db", "effect": "NoSchedule"}]))


class TestScheduling:
    def test_cordon_and_uncordon(self, api, cluster, node):
        resp = api.post(f"{BASE}/node-1/cordon")
        assert resp.status_code == 200
        assert resp.json() == {"message": "Node node-1 cordoned successfully"}
        assert cluster.get("node", "", "node-1")["spec"]["unschedulable"] is True

        resp = api.post(f"{BASE}/node-1/uncordon")
        assert resp.status_code == 200
        assert cluster.get("node", "", "node-1")["spec"]["unschedulable"] is False

    def test_missing_node(self, api):
        resp = api.post(f"{BASE}/ghost/cordon")
        assert resp.status_code == 404
        assert _error(resp) == "Node not found"


class TestTaints:
    def test_add_taint(self, api, cluster, node):
        resp = api.post(f"{BASE}/node-1/taint", json={"key": "gpu", "value": "true", "effect": "NoExecute"})
        assert resp.status_code == 200
        assert resp.json()["taint"] == {"key": "gpu", "value": "true", "effect": "NoExecute"}
        taints = cluster.get("node", "", "node-1")["spec"]["taints"]
        assert [t["key"] for t in taints] == ["dedicated", "gpu"]

    def test_same_key_replaces(self, api, cluster, node):
        resp = api.post(f"{BASE}/node-1/taint", json={"key": "dedicated", "value": "web", "effect": "NoExecute"})
        assert resp.status_code == 200
        taints = cluster.get("node", "", "node-1")["spec"]["taints"]
        assert taints == [{"key": "dedicated", "value": "web", "effect": "NoExecute"}]

    def test_invalid_effect(self, api, node):
        resp = api.post(f"{BASE}/node-1/taint", json={"key": "gpu", "effect": "Sometimes"})
        assert resp.status_code == 400

    def test_untaint(self, api, cluster, node):
        resp = api.post(f"{BASE}/node-1/untaint", json={"key": "dedicated"})
        assert resp.status_code == 200
        assert resp.json()["removedTaintKey"] == "dedicated"
        assert cluster.get("node", "", "node-1")["spec"]["taints"] == []

    def test_untaint_unknown_key(self, api, node):
        resp = api.post(f"{BASE}/node-1/untaint", json={"key": "gpu"})
        assert resp.status_code == 404
        assert _error(resp) == "Taint with key 'gpu' not found on node"


class TestEvents:
    def test_only_node_events_newest_first(self, api, cluster, node):
        cluster.add("event", make_event("old", "default", kind="Node", obj_name="node-1", last="2024-05-01T09:00:00Z"))
        cluster.add("event", make_event("new", "default", kind="Node", obj_name="node-1", last="2024-05-01T11:00:00Z"))
        cluster.add("event", make_event("other-node", "default", kind="Node", obj_name="node-2"))
        cluster.add("event", make_event("pod", "default", kind="Pod", obj_name="node-1"))

        resp = api.get(f"{BASE}/node-1/events")
        assert resp.status_code == 200
        assert [e["metadata"]["name"] for e in resp.json()] == ["new", "old"]


class TestDrain:
    def test_drain_evicts_managed_pods(self, api, cluster, node):
        cluster.add("pod", make_pod("web", node="node-1"))
        cluster.add("pod", make_pod("elsewhere", node="node-2"))
        ds_pod = make_pod("fluentd", namespace="kube-system", node="node-1")
        ds_pod["metadata"]["ownerReferences"] = [{"kind": "DaemonSet", "name": "fluentd"}]
        cluster.add("pod", ds_pod)

        resp = api.post(f"{BASE}/node-1/drain")
        assert resp.status_code == 200
        body = resp.json()
        assert body["evicted"] == ["default/web"]
        assert body["failed"] == []
        assert body["options"]["ignoreDaemonsets"] is True
        assert cluster.get("node", "", "node-1")["spec"]["unschedulable"] is True
        assert cluster.get("pod", "default", "web") is None
        assert cluster.get("pod", "default", "elsewhere") is not None
        assert cluster.get("pod", "kube-system", "fluentd") is not None

    def test_blocked_by_unmanaged_pod(self, api, cluster, node):
        cluster.add("pod", make_pod("bare", node="node-1", owners=False))
        resp = api.post(f"{BASE}/node-1/drain", json={})
        assert resp.status_code == 400
        error = resp.json()["error"]
        assert error["details"]["blockers"] == ["default/bare is not managed by a controller"]
        assert cluster.get("pod", "default", "bare") is not None

    def test_force_falls_back_to_delete(self, api, cluster, node):
        cluster.add("pod", make_pod("bare", node="node-1", owners=False))
        cluster.fail("create_namespaced_pod_eviction", status=429, reason="Too Many Requests")
        resp = api.post(f"{BASE}/node-1/drain", json={"force": True, "gracePeriod": 0})
        assert resp.status_code == 200
        assert resp.json()["evicted"] == ["default/bare"]
        [(_, kwargs)] = cluster.called("delete_namespaced_pod")
        assert kwargs["grace_period_seconds"] == 0

    def test_eviction_failure_without_force(self, api, cluster, node):
        cluster.add("pod", make_pod("web", node="node-1"))
        cluster.fail("create_namespaced_pod_eviction", status=429, reason="Too Many Requests")
        resp = api.post(f"{BASE}/node-1/drain")
        assert resp.status_code == 200
        body = resp.json()
        assert body["evicted"] == []
        assert body["failed"][0]["pod"] == "default/web"


class TestHelperPods:
    def test_restart_kubelet(self, api, cluster, node):
        resp = api.post(f"{BASE}/node-1/restart-kubelet")
        assert resp.status_code == 200
        body = resp.json()
        assert body["pod"].startswith("restart-kubelet-node-1-")
        assert "note" not in body
        pod = cluster.get("pod", "kube-system", body["pod"])
        assert pod["spec"]["nodeName"] == "node-1"
        assert pod["spec"]["hostPID"] is True
        container = pod["spec"]["containers"][0]
        assert container["securityContext"]["privileged"] is True
        assert container["command"][:2] == ["nsenter", "--target"]

    def test_restart_kubelet_missing_node(self, api, cluster):
        resp = api.post(f"{BASE}/ghost/restart-kubelet")
        assert resp.status_code == 404
        assert cluster.all("pod") == []

    def test_restart_kubeproxy_deletes_daemonset_pod(self, api, cluster, node):
        proxy = make_pod("kube-proxy-abc", namespace="kube-system", node="node-1", labels={"k8s-app": "kube-proxy"})
        cluster.add("pod", proxy)
        cluster.add(
            "pod",
            make_pod("kube-proxy-def", namespace="kube-system", node="node-2", labels={"k8s-app": "kube-proxy"}),
        )
        resp = api.post(f"{BASE}/node-1/restart-kubeproxy")
        assert resp.status_code == 200
        assert resp.json()["pod"] == "kube-proxy-abc"
        assert cluster.get("pod", "kube-system", "kube-proxy-abc") is None
        assert cluster.get("pod", "kube-system", "kube-proxy-def") is not None

    def test_restart_kubeproxy_in_other_namespace(self, api, cluster, node):
        cluster.add(
            "pod", make_pod("proxy-xyz", namespace="networking", node="node-1", labels={"component": "kube-proxy"})
        )
        resp = api.post(f"{BASE}/node-1/restart-kubeproxy")
        assert resp.status_code == 200
        assert resp.json()["pod"] == "proxy-xyz"
        assert cluster.get("pod", "networking", "proxy-xyz") is None

    def test_restart_kubeproxy_host_service(self, api, cluster, node):
        resp = api.post(f"{BASE}/node-1/restart-kubeproxy")
        assert resp.status_code == 200
        assert resp.json()["pod"].startswith("restart-kubeproxy-node-1-")

    @pytest.mark.parametrize(
        "path,prefix", [("containerd-config", "read-containerd-config-"), ("cni-config", "read-cni-config-")]
    )
    def test_config_readers(self, api, cluster, node, path, prefix):
        resp = api.get(f"{BASE}/node-1/{path}")
        assert resp.status_code == 200
        body = resp.json()
        assert body["pod"].startswith(f"{prefix}node-1-")
        assert body["note"] == "Use pod logs to view the configuration"
        pod = cluster.get("pod", "kube-system", body["pod"])
        assert pod["spec"]["volumes"][0]["hostPath"]["path"] in ("/etc", "/etc/cni")
