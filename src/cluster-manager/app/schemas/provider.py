"""Provider request/response schemas."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from shared.models import ProviderType


class ProviderCreateRequest(BaseModel):
    """Request to register a provider account."""

    name: str = Field(..., description="Provider name (letters, digits, '-' and '_')")
    type: ProviderType = Field(default=ProviderType.HETZNER, description="Provider type")
    token: str = Field(..., min_length=1, description="Provider API token")


class ProviderResponse(BaseModel):
    """Provider response model. The token is never returned."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    type: ProviderType
    added_at: datetime


class ProviderListResponse(BaseModel):
    items: list[ProviderResponse]
    total: int
