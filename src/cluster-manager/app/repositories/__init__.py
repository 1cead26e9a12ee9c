"""Data access repositories."""

from .metadata_repository import (
    ClusterRepository,
    JsonDocument,
    MetadataRepository,
    ProviderRepository,
)

__all__ = [
    "ClusterRepository",
    "JsonDocument",
    "MetadataRepository",
    "ProviderRepository",
]
