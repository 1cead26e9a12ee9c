"""Provider registration service."""

from __future__ import annotations

import asyncio
import uuid
from uuid import UUID

from shared.models import Provider, ProviderType, check_resource_name

from shared.observability import get_logger

from ..repositories.metadata_repository import MetadataRepository
from .credential_validator import HetznerTokenValidator
from .errors import CredentialError, ProviderNotFoundError, ValidationError
from .secret_store import SecretStore, provider_namespace

logger = get_logger(__name__)

TOKEN_KEY = "token"


class ProviderService:
    """Registers provider accounts and keeps their tokens in the secret store."""

    def __init__(
        self,
        repository: MetadataRepository,
        secrets: SecretStore,
        validator: HetznerTokenValidator,
    ):
        self.repository = repository
        self.secrets = secrets
        self.validator = validator

    async def add(
        self,
        name: str,
        token: str,
        passphrase: str,
        type: ProviderType | str = ProviderType.HETZNER,
    ) -> Provider:
        """Validate the token against the provider API and register it.

        Raises:
            ValidationError: bad name, duplicate name or empty passphrase
            CredentialError: the provider API rejected the token
        """
        try:
            check_resource_name(name, "Provider")
            provider_type = ProviderType(type)
        except ValueError as e:
            raise ValidationError(str(e)) from e
        if not token:
            raise ValidationError("Provider token is required")
        if not passphrase:
            raise ValidationError("Passphrase is required")
        if self.repository.providers.find_by_name(name):
            raise ValidationError(f"Provider with name '{name}' already exists")

        if not await self.validator.validate(token):
            raise CredentialError("Invalid API token: the provider rejected it")

        provider = Provider(id=uuid.uuid4(), name=name, type=provider_type)
        self.repository.providers.add(provider)
        await asyncio.to_thread(
            self.secrets.put, provider_namespace(provider.id), TOKEN_KEY, token, passphrase
        )

        logger.info("Provider added", provider_id=str(provider.id), name=name, type=provider.type)
        return provider

    def list(self) -> list[Provider]:
        return self.repository.providers.list()

    def get(self, provider_id: UUID | str) -> Provider:
        provider = self.repository.providers.get_by_id(provider_id)
        if provider is None:
            raise ProviderNotFoundError(f"Provider with ID {provider_id} not found")
        return provider

    def resolve(self, ref: str) -> Provider:
        """Look a provider up by id, falling back to its name."""
        provider = self.repository.providers.get_by_id(ref)
        if provider is not None:
            return provider
        matches = self.repository.providers.find_by_name(ref)
        if not matches:
            raise ProviderNotFoundError(f"Provider '{ref}' not found")
        if len(matches) > 1:
            raise ValidationError(f"Provider name '{ref}' is ambiguous; use its ID")
        return matches[0]

    def get_token(self, provider_id: UUID | str, passphrase: str) -> str:
        """Decrypt the provider's API token.

        Raises:
            ProviderNotFoundError: unknown provider
            CredentialError: wrong passphrase or no stored token
        """
        provider = self.get(provider_id)
        token = self.secrets.get(provider_namespace(provider.id), TOKEN_KEY, passphrase)
        if token is None:
            raise CredentialError(
                f"Token for provider '{provider.name}' not found: "
                "wrong passphrase or the token was never stored"
            )
        return token

    def remove(self, provider_id: UUID | str) -> Provider:
        """Delete a provider that no cluster references any more."""
        provider = self.get(provider_id)

        in_use = [c.name for c in self.repository.clusters.list() if c.provider_id == provider.id]
        if in_use:
            raise ValidationError(
                f"Provider '{provider.name}' is still used by clusters: {', '.join(sorted(in_use))}"
            )

        self.repository.providers.delete(provider.id)
        self.secrets.remove_namespace(provider_namespace(provider.id))
        logger.info("Provider removed", provider_id=str(provider.id), name=provider.name)
        return provider
