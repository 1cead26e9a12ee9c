"""kubeforge cluster manager FastAPI application.

The HTTP surface exposes the same operations as the CLI:
- provider registration with token validation
- cluster create, provision, scale and destroy
- node listing from live infrastructure outputs
- current-cluster context selection

Secret-bearing operations take the secret-store passphrase in the
``X-Passphrase`` header.
"""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request

from shared.config import Settings, get_settings
from shared.observability import get_logger, log_request_end, setup_logging

from .api import clusters, context, health, providers
from .api.deps import install_error_handlers
from .services.factory import Services, build_services

logger = get_logger(__name__)

QUIET_PATHS = {"/health", "/ready"}


def create_app(settings: Settings | None = None, services: Services | None = None) -> FastAPI:
    """Build the application.

    ``services`` is normally built at startup; passing one skips that, which
    is how tests inject fake boundaries.
    """
    settings = settings or (services.settings if services else get_settings())

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info(
            "Starting kubeforge service",
            version=settings.app_version,
            home_dir=str(settings.home_dir),
        )
        settings.home_dir.mkdir(parents=True, exist_ok=True)
        if getattr(app.state, "services", None) is None:
            app.state.services = build_services(settings)
        logger.info("kubeforge service started successfully")

        yield

        logger.info("kubeforge service shutdown complete")

    app = FastAPI(
        title="kubeforge",
        description="Lifecycle management for k3s clusters on Hetzner Cloud",
        version=settings.app_version,
        debug=settings.debug,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.services = services

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        if request.url.path not in QUIET_PATHS:
            log_request_end(
                logger,
                request.method,
                request.url.path,
                response.status_code,
                (time.perf_counter() - start) * 1000,
            )
        return response

    install_error_handlers(app)

    app.include_router(providers.router, prefix="/api/v1", tags=["Providers"])
    app.include_router(clusters.router, prefix="/api/v1", tags=["Clusters"])
    app.include_router(context.router, prefix="/api/v1", tags=["Context"])
    app.include_router(health.router, tags=["Health"])

    @app.get("/")
    async def root():
        """Root endpoint with service info."""
        return {
            "service": "kubeforge",
            "version": settings.app_version,
            "docs": "/docs",
        }

    return app


def main() -> None:
    """Run the API server with uvicorn."""
    import uvicorn

    settings = get_settings()
    setup_logging(log_level=settings.log_level, log_format=settings.log_format)
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    main()
