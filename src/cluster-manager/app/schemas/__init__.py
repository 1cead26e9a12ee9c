"""Request/Response schemas for the cluster manager API."""

from .cluster import (
    ClusterCreateRequest,
    ClusterListResponse,
    ClusterResponse,
    ContextRequest,
    ContextResponse,
    DestroyResponse,
    NodeListResponse,
    NodeResponse,
    ScaleRequest,
)
from .provider import ProviderCreateRequest, ProviderListResponse, ProviderResponse

__all__ = [
    "ClusterCreateRequest",
    "ClusterListResponse",
    "ClusterResponse",
    "ContextRequest",
    "ContextResponse",
    "DestroyResponse",
    "NodeListResponse",
    "NodeResponse",
    "ScaleRequest",
    "ProviderCreateRequest",
    "ProviderListResponse",
    "ProviderResponse",
]
