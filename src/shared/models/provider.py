"""Cloud provider domain models."""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import Field

from .base import KubeforgeBaseModel
from .common import utcnow


class ProviderType(str, Enum):
    """Supported cloud providers."""

    HETZNER = "hetzner"


class Provider(KubeforgeBaseModel):
    """A registered provider account.

    The API token is never part of the record; it lives in the secret store
    under the provider's namespace.
    """

    id: UUID
    name: str
    type: ProviderType = ProviderType.HETZNER
    added_at: datetime = Field(default_factory=utcnow)
