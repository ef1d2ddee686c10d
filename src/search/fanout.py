"""Provider query fan-out.

Builds query variants for a title and sends each variant to every enabled
provider concurrently. A provider that fails or times out contributes no
rows; it never aborts the search.
"""

import asyncio
from collections.abc import Callable, Sequence

import structlog

from src.config import Settings
from src.search.base import IndexProvider
from src.search.models import RawTorrent, SearchQuery
from src.search.piratebay import PirateBayProvider
from src.search.torrents_csv import TorrentsCsvProvider
from src.search.x1337 import X1337Provider
from src.search.yts import YTSProvider

logger = structlog.get_logger(__name__)

ProviderFactory = Callable[[], IndexProvider]

# Stop issuing query variants once this many raw rows per requested result exist
EARLY_STOP_FACTOR = 3

# Each provider is asked for this many rows per requested result
PER_PROVIDER_FACTOR = 2


def build_queries(query: SearchQuery) -> list[str]:
    """Build search strings, most specific first.

    Episode searches try ``S01E02``, ``1x2`` and ``Season 1 Episode 2``
    forms; a year adds ``"{title} {year}"``; the bare title always comes last.
    """
    base = query.base_title
    queries: list[str] = []

    if query.is_episode:
        season, episode = query.season, query.episode
        queries.append(f"{base} S{season:02d}E{episode:02d}")
        queries.append(f"{base} {season}x{episode}")
        queries.append(f"{base} Season {season} Episode {episode}")

    if query.year:
        queries.append(f"{base} {query.year}")

    queries.append(base)

    # Deduplicate while preserving order
    seen: set[str] = set()
    unique = []
    for q in queries:
        if q.lower() not in seen:
            seen.add(q.lower())
            unique.append(q)
    return unique


def build_provider_factories(settings: Settings) -> list[ProviderFactory]:
    """Factories for the providers enabled in settings."""
    timeout = settings.provider_timeout
    available: dict[str, ProviderFactory] = {
        "piratebay": lambda: PirateBayProvider(base_url=settings.piratebay_api_url, timeout=timeout),
        "yts": lambda: YTSProvider(base_url=settings.yts_api_url, timeout=timeout),
        "torrents_csv": lambda: TorrentsCsvProvider(
            base_url=settings.torrents_csv_url, timeout=timeout
        ),
        "x1337": lambda: X1337Provider(base_url=settings.x1337_base_url, timeout=timeout),
    }
    return [available[name] for name in settings.enabled_providers if name in available]


class ProviderFanout:
    """Runs query variants against a set of providers.

    Example:
        fanout = ProviderFanout(build_provider_factories(settings), timeout=60)
        rows = await fanout.collect(SearchQuery(title="Dune", year=2021), limit=20)
    """

    def __init__(self, factories: Sequence[ProviderFactory], timeout: float = 60.0) -> None:
        self._factories = list(factories)
        self._timeout = timeout

    async def _query_provider(
        self,
        provider: IndexProvider,
        text: str,
        query: SearchQuery,
        limit: int,
    ) -> list[RawTorrent]:
        media = "tv" if query.is_episode else "movie"
        try:
            async with provider:
                if provider.movie_only:
                    call = provider.search(query.base_title, limit, "movie", year=query.year)
                else:
                    call = provider.search(text, limit, media)
                rows = await asyncio.wait_for(call, timeout=self._timeout)
        except TimeoutError:
            logger.warning("provider_timeout", provider=provider.name, query=text)
            return []
        except Exception as e:
            logger.warning(
                "provider_failed",
                provider=provider.name,
                query=text,
                error=str(e),
                error_type=type(e).__name__,
            )
            return []

        return [row for row in rows if row.magnet]

    async def collect(self, query: SearchQuery, limit: int = 20) -> list[RawTorrent]:
        """Return the unfiltered union of raw rows across query variants."""
        queries = build_queries(query)
        per_provider = limit * PER_PROVIDER_FACTOR
        collected: list[RawTorrent] = []

        for index, text in enumerate(queries):
            providers = [factory() for factory in self._factories]
            # Movie-only indexes search by title and year, so one round is enough
            providers = [
                p for p in providers if not p.movie_only or (not query.is_episode and index == 0)
            ]

            batches = await asyncio.gather(
                *(self._query_provider(p, text, query, per_provider) for p in providers)
            )
            for provider, rows in zip(providers, batches, strict=True):
                logger.debug("provider_rows", provider=provider.name, query=text, count=len(rows))
                collected.extend(rows)

            if len(collected) >= limit * EARLY_STOP_FACTOR:
                logger.info("fanout_early_stop", queries_issued=index + 1, rows=len(collected))
                break

        logger.info("fanout_complete", title=query.base_title, rows=len(collected))
        return collected
