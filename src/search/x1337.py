"""1337x search provider.

Listing pages carry name, seeds, leeches and size; the magnet only lives on
each torrent's detail page, so detail pages are fetched concurrently for the
best-seeded rows up to a fixed cap.
"""

import asyncio
import contextlib
from urllib.parse import quote

import structlog
from bs4 import BeautifulSoup, Tag

from src.search.base import IndexProvider, MediaKind, ProviderError, ProviderUnavailableError
from src.search.models import RawTorrent
from src.search.piratebay import extract_magnet_link, parse_size

logger = structlog.get_logger(__name__)

X1337_BASE_URL = "https://1337x.to"

# Detail pages fetched per search
MAX_DETAIL_FETCHES = 10

CATEGORY_PATHS: dict[str, str] = {"movie": "Movies", "tv": "TV"}


class X1337Provider(IndexProvider):
    """Client for 1337x HTML pages."""

    name = "x1337"

    def __init__(
        self,
        base_url: str = X1337_BASE_URL,
        timeout: float = 60.0,
        max_detail_fetches: int = MAX_DETAIL_FETCHES,
    ) -> None:
        super().__init__(base_url, timeout)
        self.max_detail_fetches = max_detail_fetches

    def _parse_listing(self, html: str) -> list[dict]:
        soup = BeautifulSoup(html, "lxml")
        rows = soup.select(".table-list tbody tr")
        listings = []
        for row in rows:
            listing = self._parse_listing_row(row)
            if listing:
                listings.append(listing)
        return listings

    def _parse_listing_row(self, row: Tag) -> dict | None:
        # The first anchor in the name cell is the category icon
        name_elem = row.select_one(".name a:nth-of-type(2)")
        if not name_elem:
            return None

        title = name_elem.get_text(strip=True)
        detail_path = name_elem.get("href")
        if not title or not isinstance(detail_path, str) or not detail_path:
            return None

        if not detail_path.startswith(("http://", "https://")):
            detail_path = f"{self.base_url}{detail_path}"

        seeds = leeches = 0
        seeds_elem = row.select_one(".seeds")
        leeches_elem = row.select_one(".leeches")
        if seeds_elem:
            with contextlib.suppress(ValueError):
                seeds = int(seeds_elem.get_text(strip=True).replace(",", ""))
        if leeches_elem:
            with contextlib.suppress(ValueError):
                leeches = int(leeches_elem.get_text(strip=True).replace(",", ""))

        size = 0
        size_elem = row.select_one(".size")
        if size_elem:
            # The size cell embeds the seeder count in a child span
            size_text = size_elem.find(string=True, recursive=False)
            size = parse_size(str(size_text or size_elem.get_text(strip=True)))

        return {
            "title": title,
            "detail_url": detail_path,
            "seeds": seeds,
            "leeches": leeches,
            "size": size,
        }

    async def _fetch_magnet(self, detail_url: str) -> str:
        try:
            response = await self._get(detail_url)
        except ProviderUnavailableError as e:
            logger.debug("x1337_detail_failed", url=detail_url, error=str(e))
            return ""
        soup = BeautifulSoup(response.text, "lxml")
        return extract_magnet_link(soup)

    async def search(self, query: str, limit: int, media: MediaKind) -> list[RawTorrent]:
        url = (
            f"{self.base_url}/sort-category-search/{quote(query)}/"
            f"{CATEGORY_PATHS[media]}/seeders/desc/1/"
        )
        response = await self._get(url)
        if "Just a moment" in response.text:
            raise ProviderUnavailableError("1337x is behind a Cloudflare challenge")

        try:
            listings = self._parse_listing(response.text)
        except (ValueError, AttributeError) as e:
            raise ProviderError(f"Failed to parse 1337x listing: {e}") from e

        listings.sort(key=lambda item: item["seeds"], reverse=True)
        listings = listings[: min(limit, self.max_detail_fetches)]

        magnets = await asyncio.gather(*(self._fetch_magnet(i["detail_url"]) for i in listings))

        results = [
            RawTorrent(
                name=item["title"],
                magnet=magnet,
                seeds=item["seeds"],
                leeches=item["leeches"],
                size=item["size"] or None,
                source=self.name,
            )
            for item, magnet in zip(listings, magnets, strict=True)
            if magnet
        ]

        logger.info("x1337_results_found", query=query, count=len(results))
        return results
