"""Passphrase-encrypted secret storage.

Each namespace (a provider or cluster id) is one JSON document under
``<home>/secrets/`` with:
- a random salt, from which the passphrase-derived key is computed (scrypt)
- a check value proving which passphrase initialized the namespace
- AES-256-GCM encrypted entries, each bound to its key name

The namespace is created lazily on first ``put``. ``get`` never raises: an
unknown namespace, an unknown key and a wrong passphrase all read as None.
"""

from __future__ import annotations

import base64
import os
import re
from datetime import datetime, timezone

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from shared.config import Settings
from shared.observability import get_logger

from ..repositories.metadata_repository import JsonDocument
from .errors import CredentialError, ValidationError

logger = get_logger(__name__)

NAMESPACE_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")
CHECK_PLAINTEXT = "kubeforge-secret-store"
CHECK_KEY = "__check__"


class EncryptedValue(BaseModel):
    """Encrypted value data structure."""

    encrypted_data: str  # Base64 encoded ciphertext
    nonce: str  # Base64 encoded nonce
    created_at: str


class SecretNamespace(BaseModel):
    """On-disk layout of one namespace."""

    version: int = 1
    salt: str
    check: EncryptedValue
    entries: dict[str, EncryptedValue] = Field(default_factory=dict)


class SecretStore:
    """File-backed secret store keyed by namespace and passphrase."""

    def __init__(self, settings: Settings):
        self.base_dir = settings.secrets_dir
        self.kdf = settings.secrets

    def _document(self, namespace: str) -> JsonDocument:
        if not NAMESPACE_PATTERN.match(namespace):
            raise ValidationError(f"Invalid secret namespace: {namespace!r}")
        return JsonDocument(self.base_dir / f"{namespace}.json")

    def _derive_key(self, passphrase: str, salt: bytes) -> bytes:
        """Derive a 256-bit key from the passphrase."""
        kdf = Scrypt(salt=salt, length=32, n=self.kdf.kdf_n, r=self.kdf.kdf_r, p=self.kdf.kdf_p)
        return kdf.derive(passphrase.encode())

    def _encrypt(self, key: bytes, plaintext: str, associated_data: str) -> EncryptedValue:
        """Encrypt plaintext using AES-256-GCM."""
        aesgcm = AESGCM(key)

        nonce = os.urandom(12)  # 96-bit nonce
        ciphertext = aesgcm.encrypt(nonce, plaintext.encode(), associated_data.encode())

        return EncryptedValue(
            encrypted_data=base64.b64encode(ciphertext).decode(),
            nonce=base64.b64encode(nonce).decode(),
            created_at=datetime.now(timezone.utc).isoformat(),
        )

    def _decrypt(self, key: bytes, value: EncryptedValue, associated_data: str) -> str:
        """Decrypt ciphertext using AES-256-GCM."""
        aesgcm = AESGCM(key)

        ciphertext = base64.b64decode(value.encrypted_data)
        nonce = base64.b64decode(value.nonce)

        plaintext = aesgcm.decrypt(nonce, ciphertext, associated_data.encode())
        return plaintext.decode()

    def _load(self, namespace: str) -> SecretNamespace | None:
        data = self._document(namespace).read()
        if data is None:
            return None
        try:
            return SecretNamespace.model_validate(data)
        except PydanticValidationError:
            logger.warning("Corrupt secret namespace", namespace=namespace)
            return None

    def _unlock(self, stored: SecretNamespace, passphrase: str) -> bytes | None:
        """Return the namespace key if ``passphrase`` opens it.

        A salt or check value that does not decode reads as a wrong passphrase.
        """
        try:
            key = self._derive_key(passphrase, base64.b64decode(stored.salt))
            self._decrypt(key, stored.check, CHECK_KEY)
        except (InvalidTag, ValueError):
            return None
        return key

    def _initialize(self, passphrase: str) -> tuple[SecretNamespace, bytes]:
        salt = os.urandom(16)
        key = self._derive_key(passphrase, salt)
        stored = SecretNamespace(
            salt=base64.b64encode(salt).decode(),
            check=self._encrypt(key, CHECK_PLAINTEXT, CHECK_KEY),
        )
        return stored, key

    def can_unlock(self, namespace: str, passphrase: str) -> bool:
        """True if ``put`` with this passphrase would be accepted."""
        if not passphrase:
            return False
        stored = self._load(namespace)
        return stored is None or self._unlock(stored, passphrase) is not None

    def put(self, namespace: str, key: str, value: str, passphrase: str) -> None:
        """Store ``value`` under ``key``, initializing the namespace if needed.

        Raises:
            ValidationError: empty passphrase
            CredentialError: the namespace was initialized with another passphrase
        """
        if not passphrase:
            raise ValidationError("Passphrase is required")

        document = self._document(namespace)
        stored = self._load(namespace)
        if stored is None:
            stored, encryption_key = self._initialize(passphrase)
            logger.info("Initialized secret namespace", namespace=namespace)
        else:
            encryption_key = self._unlock(stored, passphrase)
            if encryption_key is None:
                raise CredentialError(
                    f"Passphrase does not match the one used for secret namespace '{namespace}'"
                )

        stored.entries[key] = self._encrypt(encryption_key, value, key)
        document.write(stored.model_dump())
        logger.debug("Stored secret", namespace=namespace, key=key)

    def get(self, namespace: str, key: str, passphrase: str) -> str | None:
        """Return the decrypted value, or None.

        None covers a missing namespace, a missing key and a wrong passphrase;
        callers cannot tell these apart.
        """
        if not passphrase:
            return None
        try:
            stored = self._load(namespace)
        except ValidationError:
            return None
        if stored is None or key not in stored.entries:
            return None

        encryption_key = self._unlock(stored, passphrase)
        if encryption_key is None:
            return None

        try:
            return self._decrypt(encryption_key, stored.entries[key], key)
        except (InvalidTag, ValueError):
            logger.warning("Failed to decrypt secret", namespace=namespace, key=key)
            return None

    def remove(self, namespace: str, key: str, passphrase: str) -> bool:
        """Delete ``key`` from the namespace.

        Returns:
            True if deleted, False if the namespace or key did not exist

        Raises:
            CredentialError: the passphrase does not open the namespace
        """
        document = self._document(namespace)
        stored = self._load(namespace)
        if stored is None or key not in stored.entries:
            return False

        if self._unlock(stored, passphrase or "") is None:
            raise CredentialError(
                f"Passphrase does not match the one used for secret namespace '{namespace}'"
            )

        del stored.entries[key]
        document.write(stored.model_dump())
        logger.debug("Removed secret", namespace=namespace, key=key)
        return True

    def remove_namespace(self, namespace: str) -> bool:
        """Delete a whole namespace regardless of passphrase."""
        document = self._document(namespace)
        if not document.path.exists():
            return False
        document.delete()
        logger.info("Removed secret namespace", namespace=namespace)
        return True


def provider_namespace(provider_id: object) -> str:
    return f"provider-{provider_id}"


def cluster_namespace(cluster_id: object) -> str:
    return f"cluster-{cluster_id}"
