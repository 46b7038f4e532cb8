"""Evidence link resolution.

The resolver's metadata is stored verbatim next to each evidence URL. A
resolver failure never blocks a submission: the link is kept with
``preview=None``.
"""

from abc import ABC, abstractmethod
from typing import Any

import httpx

from challenge_engine.challenges.schemas import EvidenceLink
from challenge_engine.shared.utils.logging import get_logger

logger = get_logger(__name__)


class LinkResolver(ABC):
    """Resolves an evidence URL to opaque preview metadata."""

    @abstractmethod
    async def resolve(self, url: str) -> dict[str, Any] | None:
        """Preview metadata for ``url``, or None if nothing is known."""

    async def resolve_links(self, urls: list[str]) -> list[EvidenceLink]:
        """Resolve every URL, keeping links whose resolution failed."""
        links = []
        for url in urls:
            try:
                preview = await self.resolve(url)
            except httpx.HTTPError as e:
                logger.warning("link_resolution_failed", url=url, error_type=type(e).__name__)
                preview = None
            links.append(EvidenceLink(url=url, preview=preview))
        return links

    async def close(self) -> None:
        """Release client resources."""


class NullLinkResolver(LinkResolver):
    """Resolver used when no resolver service is configured."""

    async def resolve(self, url: str) -> dict[str, Any] | None:
        return None


class HttpLinkResolver(LinkResolver):
    """Client for a link metadata (unfurl) service."""

    def __init__(self, base_url: str, timeout: float = 10.0) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(base_url=self._base_url, timeout=self._timeout)
        return self._client

    async def resolve(self, url: str) -> dict[str, Any] | None:
        client = await self._get_client()
        response = await client.get("/resolve", params={"url": url})
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return response.json()

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
