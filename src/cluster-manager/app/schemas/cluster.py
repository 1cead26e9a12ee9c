"""Cluster request/response schemas."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from shared.models import ClusterSize, ClusterState, ClusterType, NodeRole


class ClusterCreateRequest(BaseModel):
    """Request to create and provision a cluster."""

    name: str = Field(..., description="Cluster name (letters, digits, '-' and '_', at most 50)")
    regions: list[str] = Field(..., description="Hetzner locations, used round-robin")
    size: ClusterSize = Field(default=ClusterSize.SINGLE, description="single (1 node) or ha (3 nodes)")
    provider_id: UUID = Field(..., description="Registered provider to provision with")


class ClusterResponse(BaseModel):
    """Cluster response model."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    type: ClusterType
    regions: list[str]
    size: ClusterSize
    provider_id: UUID
    node_count: int
    state: ClusterState
    created_at: datetime
    updated_at: datetime


class ClusterListResponse(BaseModel):
    items: list[ClusterResponse]
    total: int
    current_cluster_id: UUID | None = None


class ScaleRequest(BaseModel):
    """Request to change a cluster's node count."""

    node_count: int = Field(..., ge=1, description="Target number of nodes")
    skip_drain: bool = Field(
        default=False,
        description="Remove nodes without cordoning them first",
    )


class DestroyResponse(BaseModel):
    cluster_id: UUID
    name: str
    infrastructure_destroyed: bool = Field(
        description="False if remote teardown failed and resources may need manual cleanup"
    )


class NodeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    name: str
    address: str
    region: str
    role: NodeRole


class NodeListResponse(BaseModel):
    cluster_id: UUID
    items: list[NodeResponse]


class ContextRequest(BaseModel):
    """Request to select the current cluster."""

    cluster: str = Field(..., description="Cluster ID or name")


class ContextResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    cluster_id: UUID
    cluster_name: str
    set_at: datetime
