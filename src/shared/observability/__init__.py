"""Observability module for structured logging."""

from .logging import (
    OperationContext,
    cluster_id_var,
    get_logger,
    log_external_call_end,
    log_external_call_start,
    log_request_end,
    operation_var,
    setup_logging,
)

__all__ = [
    # Setup
    "setup_logging",
    "get_logger",
    # Context
    "OperationContext",
    "cluster_id_var",
    "operation_var",
    # Logging helpers
    "log_request_end",
    "log_external_call_start",
    "log_external_call_end",
]
