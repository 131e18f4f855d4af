"""Shared HTTP plumbing for platform adapters and the adapter lookup table."""

from typing import Any, Optional

import httpx

from chatbridge.domain.errors import ConfigurationError, UpstreamError
from chatbridge.domain.message import Platform
from chatbridge.logging_config import get_logger, redact

logger = get_logger("platforms")


def _endpoint(url: str) -> str:
    """Host and path of a request URL, without query string or credentials."""
    parsed = httpx.URL(url)
    return redact(f"{parsed.host}{parsed.path}")


class PlatformService:
    platform: Platform

    def __init__(self, client: httpx.AsyncClient, timeout: float = 30.0):
        self.client = client
        self.timeout = timeout

    async def _request(
        self,
        method: str,
        url: str,
        json: Optional[dict] = None,
        params: Optional[dict] = None,
        headers: Optional[dict] = None,
    ) -> Any:
        try:
            response = await self.client.request(
                method, url, json=json, params=params, headers=headers, timeout=self.timeout
            )
        except httpx.HTTPError as e:
            logger.error(
                f"{self.platform.value} API request failed: {redact(repr(e))}",
                extra={"context": {"method": method, "endpoint": _endpoint(url)}},
            )
            raise UpstreamError(self.platform.value, f"request failed: {redact(repr(e))}") from e

        if response.status_code >= 400:
            logger.error(
                f"{self.platform.value} API returned {response.status_code}",
                extra={"context": {"method": method, "endpoint": _endpoint(url), "body": redact(response.text[:500])}},
            )
            raise UpstreamError(self.platform.value, f"HTTP {response.status_code}", status_code=response.status_code)

        try:
            return response.json()
        except ValueError as e:
            raise UpstreamError(self.platform.value, "invalid JSON in response", response.status_code) from e


class PlatformRegistry:
    """Adapter per platform. Adding a platform means registering one more entry."""

    def __init__(self, services: Optional[dict[Platform, Any]] = None):
        self._services: dict[Platform, Any] = dict(services or {})

    def register(self, platform: Platform, service: Any) -> None:
        self._services[platform] = service

    def get(self, platform: Platform) -> Any:
        try:
            return self._services[platform]
        except KeyError:
            raise ConfigurationError(f"No adapter registered for {platform.value}") from None

    def __contains__(self, platform: Platform) -> bool:
        return platform in self._services
