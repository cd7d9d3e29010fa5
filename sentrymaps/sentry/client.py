"""Sentry artifact-lookup API client."""

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote, urlencode, urlsplit, urlunsplit

import httpx

from ..cache import LRUCache
from ..config import DEFAULT_CACHE_SIZE, DEFAULT_SENTRY_URL

logger = logging.getLogger(__name__)


class SentryMapsError(Exception):
    """Base class for remote lookup and bundle failures."""
    pass


class ArtifactLookupError(SentryMapsError):
    """Artifact lookup request failed or returned an unusable body."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class BundleDownloadError(SentryMapsError):
    """Artifact bundle download failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class SentryClient:
    """Looks up artifact bundles by debug id and downloads them.

    Lookup results are cached by request URL. Failures are never cached,
    so the next event for the same debug id retries.
    """

    def __init__(self, base_url: str = DEFAULT_SENTRY_URL,
                 http_client: Optional[httpx.AsyncClient] = None,
                 cache_size: int = DEFAULT_CACHE_SIZE):
        self.base_url = base_url.rstrip("/")
        self._owns_http_client = http_client is None
        # No timeout: a hanging request only stalls its own event
        self.http_client = http_client or httpx.AsyncClient(timeout=None)
        self.lookup_cache = LRUCache(cache_size)

        canonical = urlsplit(self.base_url)
        if not canonical.scheme or not canonical.hostname:
            raise ValueError(f"Invalid Sentry base URL: {base_url}")
        self._canonical_scheme = canonical.scheme
        self._canonical_netloc = canonical.netloc

    def lookup_url(self, organization: str, project: str, debug_id: str) -> str:
        """Artifact-lookup request URL, which is also the cache key."""
        path = (f"/api/0/projects/{quote(organization, safe='')}/"
                f"{quote(project, safe='')}/artifact-lookup/")
        return f"{self.base_url}{path}?{urlencode({'debug_id': debug_id})}"

    async def lookup_bundles(self, organization: str, project: str,
                             debug_id: str, token: str) -> List[Any]:
        """Bundle descriptors containing debug_id in response order, unfiltered."""
        url = self.lookup_url(organization, project, debug_id)

        cached = self.lookup_cache.get(url)
        if cached is not None:
            logger.debug(f"Artifact lookup cache hit: {url}")
            return cached

        try:
            response = await self.http_client.get(url, headers=self._auth_headers(token))
        except httpx.HTTPError as e:
            raise ArtifactLookupError(f"Artifact lookup request failed: {e}")

        if not response.is_success:
            raise ArtifactLookupError(
                f"Artifact lookup failed with HTTP {response.status_code} for {url}",
                status_code=response.status_code
            )

        try:
            data = response.json()
        except ValueError as e:
            raise ArtifactLookupError(f"Artifact lookup returned invalid JSON: {e}")

        if not isinstance(data, list):
            raise ArtifactLookupError(
                f"Artifact lookup returned {type(data).__name__}, expected a list"
            )

        self.lookup_cache.set(url, data)
        logger.debug(f"Artifact lookup for {debug_id}: {len(data)} bundle(s)")
        return data

    def normalize_bundle_url(self, url: str) -> str:
        """Point a bundle URL at the canonical public host.

        Lookup responses may carry internal hostnames, schemes or ports;
        only path and query are kept so equal bundles share a cache key.
        """
        parts = urlsplit(url)
        return urlunsplit((self._canonical_scheme, self._canonical_netloc,
                           parts.path, parts.query, ""))

    async def download_bundle(self, url: str, token: str) -> bytes:
        """Download a bundle payload from its normalized URL."""
        url = self.normalize_bundle_url(url)
        try:
            response = await self.http_client.get(url, headers=self._auth_headers(token))
        except httpx.HTTPError as e:
            raise BundleDownloadError(f"Bundle download failed: {e}")

        if not response.is_success:
            raise BundleDownloadError(
                f"Bundle download failed with HTTP {response.status_code} for {url}",
                status_code=response.status_code
            )
        return response.content

    def reset(self) -> None:
        self.lookup_cache.clear()

    async def aclose(self) -> None:
        if self._owns_http_client:
            await self.http_client.aclose()

    @staticmethod
    def _auth_headers(token: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {token}"}
