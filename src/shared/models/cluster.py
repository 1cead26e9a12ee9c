"""Cluster domain models."""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import Field

from .base import KubeforgeBaseModel
from .common import utcnow


class ClusterType(str, Enum):
    """Cluster distribution."""

    KUBERNETES = "kubernetes"


class ClusterSize(str, Enum):
    """Initial control-plane topology."""

    SINGLE = "single"
    HA = "ha"


class ClusterState(str, Enum):
    """Lifecycle state of a cluster record.

    A destroyed cluster has no record, so there is no DELETED member.
    """

    UNPROVISIONED = "unprovisioned"
    PROVISIONING = "provisioning"
    READY = "ready"
    SCALING = "scaling"
    DESTROYING = "destroying"


def initial_node_count(size: ClusterSize | str) -> int:
    """Node count a cluster starts with: 3 for ``ha``, otherwise 1."""
    return 3 if size == ClusterSize.HA else 1


class Cluster(KubeforgeBaseModel):
    """A cluster record as persisted in ``clusters.json``."""

    id: UUID
    name: str
    type: ClusterType = ClusterType.KUBERNETES
    regions: list[str] = Field(min_length=1)
    size: ClusterSize
    provider_id: UUID
    node_count: int = Field(ge=1)
    # Records written before lifecycle tracking existed were already provisioned.
    state: ClusterState = ClusterState.READY
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def node_name(self, index: int) -> str:
        """Name of the node at zero-based ``index``."""
        return node_name(self.name, index)


class CurrentContext(KubeforgeBaseModel):
    """Pointer to the cluster targeted by default."""

    cluster_id: UUID
    cluster_name: str
    set_at: datetime = Field(default_factory=utcnow)


def node_name(cluster_name: str, index: int) -> str:
    """Node naming convention: ``<cluster>-node-<index + 1>``."""
    return f"{cluster_name}-node-{index + 1}"
