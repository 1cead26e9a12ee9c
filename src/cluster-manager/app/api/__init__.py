"""API routers for the cluster manager."""

from . import clusters, context, health, providers

__all__ = ["clusters", "context", "health", "providers"]
