"""Provisioning engine value types.

``ProvisionSpec`` is what the orchestrator hands to the engine adapter;
``ProvisioningOutputs`` is what comes back. Neither is persisted.
"""

from enum import Enum
from typing import Any, Mapping
from uuid import UUID

from pydantic import Field

from .base import KubeforgeBaseModel
from .cluster import node_name

# Nodes with an index below this join the control plane.
CONTROL_PLANE_REPLICAS = 3


class NodeRole(str, Enum):
    """k3s node role."""

    SERVER = "server"
    AGENT = "agent"


class ProvisionSpec(KubeforgeBaseModel):
    """Desired infrastructure for one cluster stack."""

    cluster_id: UUID
    name: str
    regions: list[str] = Field(min_length=1)
    node_count: int = Field(ge=1)
    provider_token: str = Field(repr=False)
    existing_join_token: str | None = Field(default=None, repr=False)


class NodePlan(KubeforgeBaseModel):
    """Placement and role of a single node."""

    index: int
    name: str
    region: str
    role: NodeRole
    bootstrap: bool = False


class ProvisioningOutputs(KubeforgeBaseModel):
    """Typed outputs of a converged cluster stack."""

    server_ips: list[str] = Field(default_factory=list)
    ssh_private_key: str = Field(default="", repr=False)
    join_token: str = Field(default="", repr=False)
    primary_server_ip: str = ""

    @classmethod
    def from_stack_outputs(cls, outputs: Mapping[str, Any]) -> "ProvisioningOutputs":
        """Normalize raw engine outputs.

        Values may be plain or wrapped in objects exposing ``.value``; missing
        keys fall back to empty values.
        """

        def unwrap(key: str, default: Any) -> Any:
            raw = outputs.get(key)
            if raw is None:
                return default
            value = getattr(raw, "value", raw)
            return default if value is None else value

        return cls(
            server_ips=[str(ip) for ip in unwrap("serverIps", [])],
            ssh_private_key=unwrap("sshPrivateKey", ""),
            join_token=unwrap("k3sToken", ""),
            primary_server_ip=unwrap("serverIp", ""),
        )


class NodeInfo(KubeforgeBaseModel):
    """A provisioned node as shown to operators."""

    name: str
    address: str
    region: str
    role: NodeRole


def plan_nodes(name: str, regions: list[str], node_count: int) -> list[NodePlan]:
    """Lay out nodes for a cluster.

    Node 0 bootstraps the control plane, nodes 1-2 join it as additional
    servers, every further node is an agent. Regions are assigned round-robin.
    """
    if not regions:
        raise ValueError("No regions available for cluster deployment")
    if node_count < 1:
        raise ValueError("node_count must be at least 1")

    return [
        NodePlan(
            index=i,
            name=node_name(name, i),
            region=regions[i % len(regions)],
            role=NodeRole.SERVER if i < CONTROL_PLANE_REPLICAS else NodeRole.AGENT,
            bootstrap=i == 0,
        )
        for i in range(node_count)
    ]
