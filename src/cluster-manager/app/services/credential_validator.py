"""Provider token validation.

Validates a Hetzner Cloud API token by making a single authenticated request
to the provider API. The result is a plain boolean; nothing is retried.
"""

import time

import httpx

from shared.config import HetznerSettings
from shared.observability import get_logger, log_external_call_end, log_external_call_start

logger = get_logger(__name__)


class HetznerTokenValidator:
    """Validates Hetzner Cloud API tokens against the live API."""

    def __init__(
        self,
        settings: HetznerSettings,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_url = settings.api_url.rstrip("/")
        self.timeout = settings.validation_timeout_seconds
        self._transport = transport

    def _build_auth_headers(self, token: str) -> dict[str, str]:
        """Build HTTP headers for authentication."""
        return {"Authorization": f"Bearer {token}"}

    async def validate(self, token: str) -> bool:
        """Check whether ``token`` is accepted by the provider API.

        Args:
            token: Hetzner Cloud API token

        Returns:
            True if the API answered with a success status, False otherwise
            (including connection errors and timeouts)
        """
        if not token:
            return False

        url = f"{self.api_url}/locations"
        log_external_call_start(logger, "hetzner", "validate_token")
        start = time.perf_counter()

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                response = await client.get(url, headers=self._build_auth_headers(token))
        except httpx.HTTPError as e:
            log_external_call_end(
                logger,
                "hetzner",
                "validate_token",
                success=False,
                duration_ms=(time.perf_counter() - start) * 1000,
                error=str(e) or type(e).__name__,
            )
            return False

        valid = response.is_success
        log_external_call_end(
            logger,
            "hetzner",
            "validate_token",
            success=valid,
            duration_ms=(time.perf_counter() - start) * 1000,
            error=None if valid else f"HTTP {response.status_code}",
        )
        return valid
