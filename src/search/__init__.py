"""Search module for torrent index providers.

Queries several indexes concurrently and turns their results into a short,
ranked list of stream candidates.
"""

from src.search.base import (
    IndexProvider,
    ProviderError,
    ProviderUnavailableError,
    SearchError,
    build_magnet_link,
)
from src.search.classifier import FilterOptions, classify_and_filter
from src.search.dedup import dedup_candidates, extract_content_id
from src.search.engine import TorrentSearchEngine
from src.search.fanout import ProviderFanout, build_provider_factories, build_queries
from src.search.models import CandidateTorrent, QualityTier, RawTorrent, SearchQuery
from src.search.piratebay import PirateBayProvider, search_top_torrent
from src.search.ranking import health_ratio, rank_candidates, select_per_tier
from src.search.torrents_csv import TorrentsCsvProvider
from src.search.x1337 import X1337Provider
from src.search.yts import YTSProvider

__all__ = [
    # Pipeline
    "TorrentSearchEngine",
    "ProviderFanout",
    "build_provider_factories",
    "build_queries",
    "dedup_candidates",
    "extract_content_id",
    "FilterOptions",
    "classify_and_filter",
    "health_ratio",
    "rank_candidates",
    "select_per_tier",
    # Models
    "CandidateTorrent",
    "QualityTier",
    "RawTorrent",
    "SearchQuery",
    # Providers
    "IndexProvider",
    "PirateBayProvider",
    "YTSProvider",
    "TorrentsCsvProvider",
    "X1337Provider",
    "search_top_torrent",
    "build_magnet_link",
    # Errors
    "SearchError",
    "ProviderError",
    "ProviderUnavailableError",
]
