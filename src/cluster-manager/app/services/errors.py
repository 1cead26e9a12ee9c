"""Error types raised by the cluster manager services.

Every error fails the current operation and leaves local state at its last
successfully persisted point. Nothing here is retried automatically.
"""

from __future__ import annotations


class KubeforgeError(Exception):
    """Base class for cluster manager errors."""

    code = "KUBEFORGE_ERROR"


class ValidationError(KubeforgeError):
    """Raised for malformed input. Never reaches the network."""

    code = "VALIDATION_ERROR"


class NotFoundError(KubeforgeError):
    """Raised when a provider, cluster or secret does not exist."""

    code = "NOT_FOUND"


class ProviderNotFoundError(NotFoundError):
    """Raised when a provider is not found."""

    code = "PROVIDER_NOT_FOUND"


class ClusterNotFoundError(NotFoundError):
    """Raised when a cluster is not found."""

    code = "CLUSTER_NOT_FOUND"


class CredentialError(KubeforgeError):
    """Raised for an invalid token or a passphrase that does not unlock a secret.

    The secret store cannot tell a wrong passphrase from a missing secret, so
    messages name both causes.
    """

    code = "CREDENTIAL_ERROR"


class ClusterStateError(KubeforgeError):
    """Raised when an operation is not allowed in the cluster's current state."""

    code = "INVALID_CLUSTER_STATE"


class ProvisioningError(KubeforgeError):
    """Raised when the infrastructure engine fails to converge a stack."""

    code = "PROVISIONING_FAILED"

    def __init__(self, message: str, diagnostic: str | None = None):
        super().__init__(message)
        self.diagnostic = diagnostic

    def __str__(self) -> str:
        message = super().__str__()
        if self.diagnostic:
            return f"{message}: {self.diagnostic}"
        return message


class DrainError(KubeforgeError):
    """Raised when nodes could not be cordoned before a scale-down."""

    code = "DRAIN_FAILED"
