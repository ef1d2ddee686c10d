"""Torrents-CSV search provider (JSON, no authentication)."""

import structlog

from src.search.base import IndexProvider, MediaKind, ProviderError, build_magnet_link, to_int
from src.search.models import RawTorrent

logger = structlog.get_logger(__name__)

TORRENTS_CSV_URL = "https://torrents-csv.com"


class TorrentsCsvProvider(IndexProvider):
    """Client for the Torrents-CSV ``/service/search`` endpoint."""

    name = "torrents_csv"

    def __init__(self, base_url: str = TORRENTS_CSV_URL, timeout: float = 60.0) -> None:
        super().__init__(base_url, timeout)

    async def search(self, query: str, limit: int, media: MediaKind) -> list[RawTorrent]:
        data = await self._get_json(
            f"{self.base_url}/service/search", params={"q": query, "size": limit}
        )

        # Older deployments return a bare list, newer ones wrap it
        items = data.get("torrents") if isinstance(data, dict) else data
        if not isinstance(items, list):
            raise ProviderError("Torrents-CSV payload has no torrent list")

        results: list[RawTorrent] = []
        for item in items:
            info_hash = str(item.get("infohash") or "")
            name = str(item.get("name") or "")
            if not info_hash or not name:
                continue
            results.append(
                RawTorrent(
                    name=name,
                    magnet=build_magnet_link(info_hash, name),
                    seeds=to_int(item.get("seeders")),
                    leeches=to_int(item.get("leechers")),
                    size=to_int(item.get("size_bytes")) or None,
                    source=self.name,
                )
            )

        logger.info("torrents_csv_results_found", query=query, count=len(results))
        return results[:limit]
