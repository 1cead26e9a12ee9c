"""Provider API endpoints."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, status

from ..schemas.provider import ProviderCreateRequest, ProviderListResponse, ProviderResponse
from .deps import PassphraseDep, ServicesDep

router = APIRouter()


@router.post(
    "/providers",
    response_model=ProviderResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a provider",
    description="Validate the API token against the provider and store it encrypted.",
)
async def create_provider(
    body: ProviderCreateRequest,
    services: ServicesDep,
    passphrase: PassphraseDep,
):
    provider = await services.providers.add(
        body.name,
        body.token,
        passphrase,
        type=body.type,
    )
    return ProviderResponse.model_validate(provider)


@router.get(
    "/providers",
    response_model=ProviderListResponse,
    summary="List providers",
)
async def list_providers(services: ServicesDep):
    providers = services.providers.list()
    return ProviderListResponse(
        items=[ProviderResponse.model_validate(p) for p in providers],
        total=len(providers),
    )


@router.get(
    "/providers/{provider_id}",
    response_model=ProviderResponse,
    summary="Get provider by ID",
)
async def get_provider(provider_id: UUID, services: ServicesDep):
    return ProviderResponse.model_validate(services.providers.get(provider_id))


@router.delete(
    "/providers/{provider_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Remove a provider",
    description="Fails while clusters still use the provider.",
)
async def delete_provider(provider_id: UUID, services: ServicesDep):
    services.providers.remove(provider_id)
