"""
Movie metadata lookup against an OMDb-compatible HTTP API.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from .config import MetadataConfig
from .errors import CinevaultError, MetadataError, NotFoundError
from .models import MovieMetadata

logger = logging.getLogger(__name__)


def _clean(value: Any) -> Optional[str]:
    """OMDb uses "N/A" for missing fields."""
    if value is None:
        return None
    text = str(value).strip()
    if not text or text == "N/A":
        return None
    return text


def parse_omdb_movie(identifier: str, payload: Dict[str, Any]) -> MovieMetadata:
    """Turn an OMDb ``?i=`` response into MovieMetadata."""
    if str(payload.get("Response", "True")).lower() == "false":
        raise NotFoundError(f"No metadata for {identifier}: {payload.get('Error', 'not found')}")

    title = _clean(payload.get("Title"))
    if not title:
        raise MetadataError(f"Metadata for {identifier} has no title")

    return MovieMetadata(
        identifier=identifier,
        title=title,
        description=_clean(payload.get("Plot")),
        runtime_text=_clean(payload.get("Runtime")),
        year=_clean(payload.get("Year")),
        raw=dict(payload),
    )


class MetadataClient:
    """Fetches MovieMetadata by identifier, optionally through the catalog cache."""

    def __init__(
        self,
        api_url: str,
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        cache=None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_url = api_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.cache = cache
        self.transport = transport

    @classmethod
    def from_config(cls, config: MetadataConfig, cache=None) -> "MetadataClient":
        return cls(
            api_url=config.api_url,
            api_key=config.api_key,
            timeout=config.timeout,
            cache=cache if config.use_cache else None,
        )

    async def _cached(self, identifier: str) -> Optional[MovieMetadata]:
        if self.cache is None:
            return None
        try:
            return await self.cache.get_cached_metadata(identifier)
        except CinevaultError as e:
            logger.warning(f"[Metadata] Cache lookup failed for {identifier}: {e}")
            return None

    async def _remember(self, metadata: MovieMetadata) -> None:
        if self.cache is None:
            return
        try:
            await self.cache.cache_metadata(metadata)
        except CinevaultError as e:
            logger.warning(f"[Metadata] Cache write failed for {metadata.identifier}: {e}")

    async def fetch(self, identifier: str) -> MovieMetadata:
        """
        Look up ``identifier``.

        Raises:
            NotFoundError: The API answered but knows no such title.
            MetadataError: The API is unreachable or answered garbage.
        """
        cached = await self._cached(identifier)
        if cached is not None:
            logger.debug(f"[Metadata] Cache hit for {identifier}")
            return cached

        params = {"i": identifier}
        if self.api_key:
            params["apikey"] = self.api_key

        try:
            async with httpx.AsyncClient(transport=self.transport, timeout=self.timeout) as client:
                response = await client.get(f"{self.api_url}/", params=params)
                response.raise_for_status()
                payload = response.json()
        except httpx.HTTPError as e:
            raise MetadataError(f"Metadata request for {identifier} failed: {e}") from e
        except ValueError as e:
            raise MetadataError(f"Metadata response for {identifier} is not JSON: {e}") from e

        if not isinstance(payload, dict):
            raise MetadataError(f"Metadata response for {identifier} is not an object")

        metadata = parse_omdb_movie(identifier, payload)
        logger.info(f"[Metadata] Fetched {identifier}: {metadata.title} ({metadata.year or '?'})")
        await self._remember(metadata)
        return metadata
