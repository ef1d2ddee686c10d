"""PirateBay torrent search provider.

Searches through the apibay.org JSON API and falls back to scraping HTML
mirrors when the API is unavailable.

Note: PirateBay has many mirrors that change frequently.
"""

import asyncio
import contextlib
import re
from urllib.parse import quote_plus

import httpx
import structlog
from bs4 import BeautifulSoup, Tag

from src.search.base import (
    IndexProvider,
    MediaKind,
    ProviderError,
    ProviderUnavailableError,
    build_magnet_link,
    to_int,
)
from src.search.models import RawTorrent

logger = structlog.get_logger(__name__)


# =============================================================================
# Constants
# =============================================================================

PIRATEBAY_API_URL = "https://apibay.org"

# API retry settings (API is flaky, returns 502 sometimes)
API_MAX_RETRIES = 3
API_RETRY_DELAY = 0.5  # seconds

# HTML mirrors, tried in order when the API fails
PIRATEBAY_MIRRORS = [
    "https://thepiratebay.org",
    "https://thepiratebay10.org",
    "https://piratebay.live",
    "https://tpb.party",
]

# CSS selector patterns for different site layouts
SELECTOR_PATTERNS = [
    ("table#searchResult tr", "classic_table"),
    ("table#searchResult tbody tr", "classic_table_tbody"),
    ("ol#torrents li", "modern_list"),
    ("li.list-entry", "list_entries"),
]

# PirateBay category IDs
CATEGORY_VIDEO = 200
CATEGORY_VIDEO_MOVIES = 201
CATEGORY_VIDEO_TV = 205
CATEGORY_VIDEO_HD_MOVIES = 207
CATEGORY_VIDEO_HD_TV = 208

API_CATEGORIES: dict[str, str] = {
    "movie": f"{CATEGORY_VIDEO},{CATEGORY_VIDEO_MOVIES},{CATEGORY_VIDEO_HD_MOVIES}",
    "tv": f"{CATEGORY_VIDEO},{CATEGORY_VIDEO_TV},{CATEGORY_VIDEO_HD_TV}",
}

HTML_CATEGORIES: dict[str, int] = {
    "movie": CATEGORY_VIDEO_MOVIES,
    "tv": CATEGORY_VIDEO_TV,
}


# =============================================================================
# Helper Functions
# =============================================================================


def parse_size(size_str: str) -> int:
    """Parse a human-readable size like ``"4.37 GiB"`` into bytes.

    Returns:
        Size in bytes, 0 when the string cannot be parsed.
    """
    match = re.match(
        r"([\d.,]+)\s*(GB|MB|KB|TB|GiB|MiB|KiB|TiB|B)?", size_str.strip(), re.IGNORECASE
    )
    if not match:
        return 0

    try:
        # Handle both comma and dot as decimal separator
        number = float(match.group(1).replace(",", "."))
    except ValueError:
        return 0

    unit = (match.group(2) or "MB").upper()
    multipliers = {
        "B": 1,
        "KB": 1024,
        "KIB": 1024,
        "MB": 1024**2,
        "MIB": 1024**2,
        "GB": 1024**3,
        "GIB": 1024**3,
        "TB": 1024**4,
        "TIB": 1024**4,
    }
    return int(number * multipliers.get(unit, 1024**2))


def extract_magnet_link(element: Tag) -> str:
    """Extract magnet link from a result element, or empty string."""
    magnet_elem = element.select_one('a[href^="magnet:"]')
    if magnet_elem:
        href = magnet_elem.get("href")
        if isinstance(href, str):
            return href
        if isinstance(href, list) and href:
            return href[0]

    return ""


# =============================================================================
# PirateBay Provider
# =============================================================================


class PirateBayProvider(IndexProvider):
    """Async client for searching PirateBay."""

    name = "piratebay"

    def __init__(
        self,
        base_url: str = PIRATEBAY_API_URL,
        timeout: float = 60.0,
        mirrors: list[str] | None = None,
    ) -> None:
        super().__init__(base_url, timeout)
        self.mirrors = [m.rstrip("/") for m in (mirrors or PIRATEBAY_MIRRORS)]

    async def _search_api(self, query: str, media: MediaKind) -> list[dict]:
        """Query the JSON API, retrying on gateway errors.

        Raises:
            ProviderUnavailableError: If API is unavailable.
            ProviderError: If the payload is not a list.
        """
        api_url = f"{self.base_url}/q.php"
        params = {"q": query, "cat": API_CATEGORIES[media]}

        logger.info("searching_piratebay_api", query=query, api_url=api_url)

        response: httpx.Response | None = None
        for attempt in range(API_MAX_RETRIES):
            try:
                response = await self.client.get(api_url, params=params)
                response.raise_for_status()
                break
            except httpx.HTTPStatusError as e:
                if e.response.status_code in (502, 503, 504) and attempt < API_MAX_RETRIES - 1:
                    logger.warning(
                        "api_retry",
                        attempt=attempt + 1,
                        max_retries=API_MAX_RETRIES,
                        status=e.response.status_code,
                    )
                    await asyncio.sleep(API_RETRY_DELAY * (attempt + 1))
                    continue
                raise ProviderUnavailableError(
                    f"PirateBay API returned error {e.response.status_code}"
                ) from e
            except httpx.TimeoutException as e:
                raise ProviderUnavailableError(f"API request timed out: {e}") from e
            except httpx.HTTPError as e:
                raise ProviderUnavailableError(f"Cannot connect to PirateBay API: {e}") from e

        if response is None:
            raise ProviderUnavailableError("No response received from API")

        try:
            data = response.json()
        except ValueError as e:
            raise ProviderError(f"Failed to parse API response: {e}") from e

        if not isinstance(data, list):
            raise ProviderError("PirateBay API payload is not a list")

        # No results are reported as a single placeholder row with id "0"
        if not data or (len(data) == 1 and str(data[0].get("id")) == "0"):
            logger.info("api_no_results", query=query)
            return []

        return data

    def _parse_api_item(self, item: dict) -> RawTorrent | None:
        info_hash = str(item.get("info_hash", ""))
        name = str(item.get("name", ""))
        if not name or len(info_hash) != 40:
            return None

        return RawTorrent(
            name=name,
            magnet=build_magnet_link(info_hash, name),
            seeds=to_int(item.get("seeders")),
            leeches=to_int(item.get("leechers")),
            size=to_int(item.get("size")) or None,
            source=self.name,
        )

    async def _fetch_page(self, url: str) -> str:
        """Fetch an HTML mirror page.

        Raises:
            ProviderUnavailableError: If the mirror is down or behind a challenge.
        """
        response = await self._get(url)
        html = response.text

        if "Cloudflare" in html and "challenge" in html.lower():
            raise ProviderUnavailableError("PirateBay mirror is behind Cloudflare protection")

        return html

    def _parse_search_results(self, html: str) -> list[RawTorrent]:
        """Parse result rows from an HTML search page."""
        soup = BeautifulSoup(html, "lxml")
        rows: list[Tag] = []

        for selector, pattern_name in SELECTOR_PATTERNS:
            rows = soup.select(selector)
            if rows:
                logger.debug("selector_pattern_matched", pattern=pattern_name, rows=len(rows))
                break

        results: list[RawTorrent] = []
        for row in rows:
            try:
                result = self._parse_result_row(row)
            except (ValueError, AttributeError) as e:
                logger.warning("failed_to_parse_row", error=str(e))
                continue
            if result:
                results.append(result)

        return results

    def _parse_result_row(self, row: Tag) -> RawTorrent | None:
        # Skip header rows
        if row.select_one("th"):
            return None

        title_elem = row.select_one("a.detLink") or row.select_one('a[href*="/torrent/"]')
        if not title_elem:
            return None

        title = title_elem.get_text(strip=True)
        magnet = extract_magnet_link(row)
        if not title or not magnet:
            return None

        size = 0
        desc_elem = row.select_one("font.detDesc") or row.select_one("div.detDesc")
        if desc_elem:
            size_match = re.search(
                r"Size[:\s]*([\d.,]+\s*(?:GB|MB|KB|TB|GiB|MiB|KiB|TiB|B))",
                desc_elem.get_text(),
                re.IGNORECASE,
            )
            if size_match:
                size = parse_size(size_match.group(1))

        seeds = leeches = 0
        cells = row.select("td")
        if len(cells) >= 3:
            # Seeds is second to last, leeches last
            with contextlib.suppress(ValueError):
                seeds = int(cells[-2].get_text(strip=True).replace(",", ""))
            with contextlib.suppress(ValueError):
                leeches = int(cells[-1].get_text(strip=True).replace(",", ""))

        return RawTorrent(
            name=title,
            magnet=magnet,
            seeds=seeds,
            leeches=leeches,
            size=size or None,
            source=self.name,
        )

    async def _search_html(self, query: str, media: MediaKind) -> list[RawTorrent]:
        last_error: Exception | None = None
        for mirror in self.mirrors:
            url = f"{mirror}/search/{quote_plus(query)}/0/7/{HTML_CATEGORIES[media]}"
            try:
                return self._parse_search_results(await self._fetch_page(url))
            except ProviderUnavailableError as e:
                logger.warning("mirror_unavailable", mirror=mirror, error=str(e))
                last_error = e

        raise ProviderUnavailableError(
            f"All PirateBay mirrors are unavailable. Last error: {last_error}"
        )

    async def search(self, query: str, limit: int, media: MediaKind) -> list[RawTorrent]:
        """Search PirateBay, API first and HTML mirrors second."""
        try:
            items = await self._search_api(query, media)
            results = [r for r in (self._parse_api_item(i) for i in items) if r]
        except ProviderError as e:
            logger.warning("api_search_failed_trying_html", error=str(e))
            results = await self._search_html(query, media)

        results.sort(key=lambda r: r.seeds, reverse=True)
        logger.info("piratebay_results_found", query=query, count=len(results))
        return results[:limit]


# =============================================================================
# Convenience Functions
# =============================================================================


async def search_top_torrent(
    title: str,
    year: int | None = None,
    base_url: str = PIRATEBAY_API_URL,
) -> RawTorrent | None:
    """Return the single best-seeded 1080p PirateBay hit for a title.

    Used to decorate catalog entries with a default stream. Failures
    return None instead of raising.
    """
    query = f"{title} {year or ''} 1080p".replace("  ", " ")
    try:
        async with PirateBayProvider(base_url=base_url) as provider:
            results = await provider.search(query, limit=1, media="movie")
    except ProviderError as e:
        logger.warning("top_torrent_search_failed", title=title, error=str(e))
        return None

    return results[0] if results else None
