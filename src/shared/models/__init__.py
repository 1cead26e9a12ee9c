"""Shared data models for kubeforge.

All models follow these conventions:
- Timestamps: ISO 8601 format with timezone (UTC)
- IDs: UUID v4
- Attribute names: snake_case; serialized keys: camelCase
- Enums: lowercase values
"""

# Base
from .base import KubeforgeBaseModel

# Cluster domain
from .cluster import (
    Cluster,
    ClusterSize,
    ClusterState,
    ClusterType,
    CurrentContext,
    initial_node_count,
    node_name,
)

# Common types
from .common import check_resource_name, utcnow

# Provider domain
from .provider import Provider, ProviderType

# Provisioning
from .provisioning import (
    CONTROL_PLANE_REPLICAS,
    NodeInfo,
    NodePlan,
    NodeRole,
    ProvisioningOutputs,
    ProvisionSpec,
    plan_nodes,
)

__all__ = [
    # Base
    "KubeforgeBaseModel",
    # Cluster
    "Cluster",
    "ClusterSize",
    "ClusterState",
    "ClusterType",
    "CurrentContext",
    "initial_node_count",
    "node_name",
    # Common
    "check_resource_name",
    "utcnow",
    # Provider
    "Provider",
    "ProviderType",
    # Provisioning
    "CONTROL_PLANE_REPLICAS",
    "NodeInfo",
    "NodePlan",
    "NodeRole",
    "ProvisioningOutputs",
    "ProvisionSpec",
    "plan_nodes",
]
