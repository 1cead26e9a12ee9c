"""Wires services together from settings."""

from __future__ import annotations

from dataclasses import dataclass

import httpx

from shared.config import Settings

from ..repositories.metadata_repository import MetadataRepository
from .cluster_service import ClusterService
from .credential_validator import HetznerTokenValidator
from .locks import ClusterLocks
from .node_drain import NodeDrainCoordinator
from .provider_service import ProviderService
from .provisioning import ProvisioningEngine, PulumiProvisioningEngine
from .secret_store import SecretStore


@dataclass
class Services:
    """Service graph shared by the HTTP app and the CLI."""

    settings: Settings
    repository: MetadataRepository
    secrets: SecretStore
    providers: ProviderService
    clusters: ClusterService


def build_services(
    settings: Settings,
    engine: ProvisioningEngine | None = None,
    drainer: NodeDrainCoordinator | None = None,
    validator_transport: httpx.AsyncBaseTransport | None = None,
) -> Services:
    """Build the service graph rooted at ``settings.home_dir``.

    Boundaries (engine, drain coordinator, Hetzner transport) can be replaced,
    which is how tests run without cloud access.
    """
    repository = MetadataRepository(settings)
    secrets = SecretStore(settings)
    providers = ProviderService(
        repository,
        secrets,
        HetznerTokenValidator(settings.hetzner, transport=validator_transport),
    )
    clusters = ClusterService(
        settings,
        repository,
        secrets,
        providers,
        engine or PulumiProvisioningEngine(settings),
        drainer or NodeDrainCoordinator(),
        locks=ClusterLocks(),
    )
    return Services(
        settings=settings,
        repository=repository,
        secrets=secrets,
        providers=providers,
        clusters=clusters,
    )
