"""Shared API dependencies and error mapping."""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, FastAPI, Header, Request, status
from fastapi.responses import JSONResponse

from shared.observability import get_logger

from ..services.errors import (
    ClusterStateError,
    CredentialError,
    DrainError,
    KubeforgeError,
    NotFoundError,
    ProvisioningError,
    ValidationError,
)
from ..services.factory import Services

logger = get_logger(__name__)

PASSPHRASE_HEADER = "X-Passphrase"

# Checked in order; subclasses come before their bases.
ERROR_STATUS: list[tuple[type[KubeforgeError], int]] = [
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (CredentialError, status.HTTP_401_UNAUTHORIZED),
    (ClusterStateError, status.HTTP_409_CONFLICT),
    (ProvisioningError, status.HTTP_502_BAD_GATEWAY),
    (DrainError, status.HTTP_502_BAD_GATEWAY),
]


def get_services(request: Request) -> Services:
    """Dependency to get the service graph built at startup."""
    return request.app.state.services


def get_passphrase(
    passphrase: Annotated[str | None, Header(alias=PASSPHRASE_HEADER)] = None,
) -> str:
    """Dependency requiring the secret-store passphrase header."""
    if not passphrase:
        raise CredentialError(f"{PASSPHRASE_HEADER} header is required")
    return passphrase


ServicesDep = Annotated[Services, Depends(get_services)]
PassphraseDep = Annotated[str, Depends(get_passphrase)]


def status_for(error: KubeforgeError) -> int:
    for error_type, status_code in ERROR_STATUS:
        if isinstance(error, error_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def kubeforge_error_handler(request: Request, exc: KubeforgeError) -> JSONResponse:
    """Render service errors as ``{"detail": {"error": CODE, "message": ...}}``."""
    status_code = status_for(exc)
    detail: dict[str, object] = {"error": exc.code, "message": str(exc)}
    if isinstance(exc, ProvisioningError) and exc.diagnostic:
        detail["message"] = exc.args[0]
        detail["diagnostic"] = exc.diagnostic

    if status_code >= 500:
        logger.error("Request failed", error=exc.code, message=str(exc), path=request.url.path)
    return JSONResponse(status_code=status_code, content={"detail": detail})


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(KubeforgeError, kubeforge_error_handler)
