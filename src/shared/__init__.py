"""kubeforge shared package.

This package contains components shared by the cluster manager service and CLI:
- models: Pydantic data models
- config: Configuration management
- observability: Structured logging
"""

__version__ = "0.1.0"
