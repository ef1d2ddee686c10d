"""Base class and errors for torrent index providers.

Every provider is an async context manager owning one ``httpx.AsyncClient``
and exposes ``search(query, limit, media)`` returning raw rows.
"""

from abc import ABC, abstractmethod
from typing import Any, Literal
from urllib.parse import quote_plus

import httpx
import structlog

from src.search.models import RawTorrent

logger = structlog.get_logger(__name__)

MediaKind = Literal["movie", "tv"]

# User agent for requests
USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

# Request timeout in seconds
REQUEST_TIMEOUT = 60.0

# Tracker appended to locators built from a bare info hash
DEFAULT_TRACKER = "udp://tracker.openbittorrent.com:6969/announce"


# =============================================================================
# Exceptions
# =============================================================================


class SearchError(Exception):
    """Base exception for search errors."""

    pass


class ProviderError(SearchError):
    """Raised when a provider returns something we cannot use."""

    pass


class ProviderUnavailableError(ProviderError):
    """Raised when a provider is unreachable, blocked or failing."""

    pass


# =============================================================================
# Helpers
# =============================================================================


def build_magnet_link(info_hash: str, name: str = "", trackers: list[str] | None = None) -> str:
    """Build a magnet link from an info hash.

    Args:
        info_hash: BitTorrent info hash (40 hex or 32 base32 characters).
        name: Optional display name for the torrent.
        trackers: Trackers to append; defaults to a single open tracker.

    Returns:
        Complete magnet URI.
    """
    magnet = f"magnet:?xt=urn:btih:{info_hash}"

    if name:
        magnet += f"&dn={quote_plus(name)}"

    for tracker in trackers if trackers is not None else [DEFAULT_TRACKER]:
        magnet += f"&tr={quote_plus(tracker)}"

    return magnet


def to_int(value: Any, default: int = 0) -> int:
    """Coerce provider numbers that may arrive as strings like ``"1,204"``."""
    if value is None or value == "":
        return default
    try:
        return int(str(value).replace(",", "").strip())
    except ValueError:
        return default


# =============================================================================
# Provider base
# =============================================================================


class IndexProvider(ABC):
    """Async client for one torrent index.

    Example:
        async with PirateBayProvider() as provider:
            rows = await provider.search("Dune 2021", limit=40, media="movie")
    """

    name: str = "provider"
    movie_only: bool = False

    def __init__(self, base_url: str, timeout: float = REQUEST_TIMEOUT) -> None:
        """Initialize the provider.

        Args:
            base_url: Base URL of the index or its API.
            timeout: Request timeout in seconds.
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client: httpx.AsyncClient | None = None

    def _build_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout),
            headers={
                "User-Agent": USER_AGENT,
                "Accept": "application/json,text/html;q=0.9,*/*;q=0.8",
                "Accept-Language": "en-US,en;q=0.9",
            },
            follow_redirects=True,
        )

    async def __aenter__(self) -> "IndexProvider":
        """Enter async context manager."""
        self._client = self._build_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit async context manager."""
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get the HTTP client, ensuring it's initialized.

        Raises:
            RuntimeError: If client is not initialized (not in context manager).
        """
        if self._client is None:
            raise RuntimeError("Client not initialized. Use 'async with' context manager.")
        return self._client

    async def _get(self, url: str, params: dict | None = None) -> httpx.Response:
        """GET a URL, translating transport failures into provider errors."""
        logger.debug("provider_request", provider=self.name, url=url, params=params)
        try:
            response = await self.client.get(url, params=params)
            response.raise_for_status()
            return response
        except httpx.TimeoutException as e:
            raise ProviderUnavailableError(f"{self.name} request timed out: {e}") from e
        except httpx.HTTPStatusError as e:
            raise ProviderUnavailableError(
                f"{self.name} returned error {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise ProviderUnavailableError(f"Cannot connect to {self.name}: {e}") from e

    async def _get_json(self, url: str, params: dict | None = None) -> Any:
        response = await self._get(url, params=params)
        try:
            return response.json()
        except ValueError as e:
            raise ProviderError(f"{self.name} returned malformed JSON: {e}") from e

    @abstractmethod
    async def search(self, query: str, limit: int, media: MediaKind) -> list[RawTorrent]:
        """Search the index.

        Args:
            query: Free-text query.
            limit: Maximum rows wanted.
            media: Whether the caller is looking for a movie or a TV episode.

        Returns:
            Raw rows; each carries a locator.

        Raises:
            ProviderUnavailableError: If the index cannot be reached.
            ProviderError: If the response cannot be parsed.
        """
