from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict

from kite.handlers.base import ResourceHandler
from kite.handlers.cr import CustomResourceHandler
from kite.handlers.deployments import DeploymentHandler
from kite.handlers.generic import GenericResourceHandler
from kite.handlers.kinds import BUILTIN_KINDS
from kite.handlers.nodes import NodeHandler
from kite.handlers.pods import PodHandler
from kite.kube.client import K8sClient


@dataclass
class HandlerRegistry:
    client: K8sClient
    pods: PodHandler
    deployments: DeploymentHandler
    nodes: NodeHandler
    builtin: Dict[str, ResourceHandler] = field(default_factory=dict)

    def resolve(self, resource: str) -> ResourceHandler:
        """Built-in handler for ``resource``; any other name is treated as a CRD."""
        handler = self.builtin.get(resource)
        if handler is not None:
            return handler
        return CustomResourceHandler(self.client, resource)

    def custom(self, crd_name: str) -> CustomResourceHandler:
        return CustomResourceHandler(self.client, crd_name)


def build_registry(client: K8sClient) -> HandlerRegistry:
    pods = PodHandler(client)
    deployments = DeploymentHandler(client)
    nodes = NodeHandler(client)
    builtin: Dict[str, ResourceHandler] = {
        kind.resource: GenericResourceHandler(client, kind) for kind in BUILTIN_KINDS
    }
    builtin.update({"pods": pods, "deployments": deployments, "nodes": nodes})
    return HandlerRegistry(client=client, pods=pods, deployments=deployments, nodes=nodes, builtin=builtin)
