"""Current-cluster context endpoints."""

from __future__ import annotations

from fastapi import APIRouter, status

from ..schemas.cluster import ContextRequest, ContextResponse
from ..services.errors import NotFoundError
from .deps import ServicesDep

router = APIRouter()


@router.get(
    "/context",
    response_model=ContextResponse,
    summary="Get the current cluster",
)
async def get_context(services: ServicesDep):
    context = services.clusters.current()
    if context is None:
        raise NotFoundError("No current cluster selected")
    return ContextResponse.model_validate(context)


@router.put(
    "/context",
    response_model=ContextResponse,
    summary="Select the current cluster",
)
async def set_context(body: ContextRequest, services: ServicesDep):
    cluster = services.clusters.resolve(body.cluster)
    return ContextResponse.model_validate(services.clusters.use(cluster.id))


@router.delete(
    "/context",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Clear the current cluster",
)
async def clear_context(services: ServicesDep):
    services.clusters.clear_current()
