"""YTS movie search provider.

YTS only lists movies, so the fan-out skips it for episode searches.
"""

import structlog

from src.search.base import IndexProvider, MediaKind, ProviderError, build_magnet_link, to_int
from src.search.models import RawTorrent

logger = structlog.get_logger(__name__)

YTS_API_URL = "https://yts.mx/api/v2"


class YTSProvider(IndexProvider):
    """Client for the YTS ``list_movies`` JSON API."""

    name = "yts"
    movie_only = True

    def __init__(self, base_url: str = YTS_API_URL, timeout: float = 60.0) -> None:
        super().__init__(base_url, timeout)

    async def search(
        self,
        query: str,
        limit: int,
        media: MediaKind = "movie",
        year: int | None = None,
    ) -> list[RawTorrent]:
        """Search YTS.

        Every torrent of every matching movie becomes one row, named
        ``"{title_long} [YTS]"`` with the quality YTS reports.
        """
        params: dict[str, str | int] = {"query_term": query, "limit": limit}
        if year:
            params["year"] = year

        data = await self._get_json(f"{self.base_url}/list_movies.json", params=params)

        if not isinstance(data, dict) or data.get("status") != "ok":
            raise ProviderError("YTS returned a non-ok status")

        movies = (data.get("data") or {}).get("movies") or []
        if not isinstance(movies, list):
            raise ProviderError("YTS movies field is not a list")

        results: list[RawTorrent] = []
        for movie in movies:
            title_long = movie.get("title_long") or movie.get("title") or ""
            for torrent in movie.get("torrents") or []:
                info_hash = torrent.get("hash")
                if not info_hash or not title_long:
                    continue
                results.append(
                    RawTorrent(
                        name=f"{title_long} [YTS]",
                        magnet=build_magnet_link(info_hash, title_long),
                        seeds=to_int(torrent.get("seeds")),
                        leeches=to_int(torrent.get("peers")),
                        size=to_int(torrent.get("size_bytes")) or None,
                        quality=str(torrent.get("quality") or "").upper() or None,
                        source=self.name,
                    )
                )

        logger.info("yts_results_found", query=query, count=len(results))
        return results
