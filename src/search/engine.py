"""Search pipeline: fan-out, dedup, classify/filter, rank, select."""

import structlog

from src.config import Settings
from src.search.classifier import FilterOptions, classify_and_filter
from src.search.dedup import dedup_candidates
from src.search.fanout import ProviderFanout, build_provider_factories
from src.search.models import CandidateTorrent, SearchQuery
from src.search.ranking import rank_candidates, select_per_tier

logger = structlog.get_logger(__name__)


class TorrentSearchEngine:
    """Finds the best stream candidates for a title.

    Example:
        engine = TorrentSearchEngine.from_settings(settings)
        results = await engine.search(SearchQuery(title="Severance", season=1, episode=2))
    """

    def __init__(
        self,
        fanout: ProviderFanout,
        options: FilterOptions | None = None,
        default_limit: int = 20,
    ) -> None:
        self._fanout = fanout
        self._options = options or FilterOptions()
        self._default_limit = default_limit

    @classmethod
    def from_settings(cls, settings: Settings) -> "TorrentSearchEngine":
        fanout = ProviderFanout(
            build_provider_factories(settings),
            timeout=settings.provider_timeout,
        )
        return cls(
            fanout,
            options=FilterOptions.from_settings(settings),
            default_limit=settings.search_limit,
        )

    async def search(self, query: SearchQuery, limit: int | None = None) -> list[CandidateTorrent]:
        """Return at most ``limit`` candidates, one per quality tier, best first.

        An empty list means nothing suitable was found.
        """
        limit = limit or self._default_limit

        raw = await self._fanout.collect(query, limit=limit)
        unique = dedup_candidates(raw)
        survivors = classify_and_filter(unique, query, self._options)
        selected = select_per_tier(rank_candidates(survivors), limit)

        logger.info(
            "search_complete",
            title=query.base_title,
            year=query.year,
            season=query.season,
            episode=query.episode,
            raw=len(raw),
            unique=len(unique),
            survivors=len(survivors),
            returned=len(selected),
        )
        return selected
