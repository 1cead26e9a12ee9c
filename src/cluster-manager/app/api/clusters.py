"""Cluster lifecycle API endpoints.

Provisioning, scaling and teardown block until the engine finishes, which
can take several minutes.
"""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, status

from ..schemas.cluster import (
    ClusterCreateRequest,
    ClusterListResponse,
    ClusterResponse,
    DestroyResponse,
    NodeListResponse,
    NodeResponse,
    ScaleRequest,
)
from .deps import PassphraseDep, ServicesDep

router = APIRouter()


@router.post(
    "/clusters",
    response_model=ClusterResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a cluster",
    description="Register, provision and select a new cluster.",
)
async def create_cluster(
    body: ClusterCreateRequest,
    services: ServicesDep,
    passphrase: PassphraseDep,
):
    cluster = await services.clusters.create(
        body.name,
        body.regions,
        body.size,
        body.provider_id,
        passphrase,
    )
    return ClusterResponse.model_validate(cluster)


@router.get(
    "/clusters",
    response_model=ClusterListResponse,
    summary="List clusters",
)
async def list_clusters(services: ServicesDep):
    clusters = services.clusters.list()
    context = services.clusters.current()
    return ClusterListResponse(
        items=[ClusterResponse.model_validate(c) for c in clusters],
        total=len(clusters),
        current_cluster_id=context.cluster_id if context else None,
    )


@router.get(
    "/clusters/{cluster_id}",
    response_model=ClusterResponse,
    summary="Get cluster by ID",
)
async def get_cluster(cluster_id: UUID, services: ServicesDep):
    return ClusterResponse.model_validate(services.clusters.get(cluster_id))


@router.post(
    "/clusters/{cluster_id}/provision",
    response_model=ClusterResponse,
    summary="Provision a cluster",
    description="Retry provisioning of a cluster whose creation failed.",
)
async def provision_cluster(
    cluster_id: UUID,
    services: ServicesDep,
    passphrase: PassphraseDep,
):
    cluster = await services.clusters.provision(cluster_id, passphrase)
    return ClusterResponse.model_validate(cluster)


@router.post(
    "/clusters/{cluster_id}/scale",
    response_model=ClusterResponse,
    summary="Scale a cluster",
)
async def scale_cluster(
    cluster_id: UUID,
    body: ScaleRequest,
    services: ServicesDep,
    passphrase: PassphraseDep,
):
    cluster = await services.clusters.scale(
        cluster_id,
        body.node_count,
        passphrase,
        skip_drain=body.skip_drain,
    )
    return ClusterResponse.model_validate(cluster)


@router.get(
    "/clusters/{cluster_id}/nodes",
    response_model=NodeListResponse,
    summary="List cluster nodes",
    description="Read node addresses from the live infrastructure stack.",
)
async def list_nodes(
    cluster_id: UUID,
    services: ServicesDep,
    passphrase: PassphraseDep,
):
    nodes = await services.clusters.nodes(cluster_id, passphrase)
    return NodeListResponse(
        cluster_id=cluster_id,
        items=[NodeResponse.model_validate(n) for n in nodes],
    )


@router.delete(
    "/clusters/{cluster_id}",
    response_model=DestroyResponse,
    summary="Destroy a cluster",
    description="Tear down infrastructure and delete local state, even if teardown fails.",
)
async def destroy_cluster(
    cluster_id: UUID,
    services: ServicesDep,
    passphrase: PassphraseDep,
):
    cluster = services.clusters.get(cluster_id)
    destroyed = await services.clusters.destroy(cluster_id, passphrase)
    return DestroyResponse(
        cluster_id=cluster.id,
        name=cluster.name,
        infrastructure_destroyed=destroyed,
    )
