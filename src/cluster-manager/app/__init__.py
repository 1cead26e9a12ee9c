"""kubeforge cluster manager: lifecycle orchestration, HTTP API and CLI."""
