"""End-to-end tests for TorrentSearchEngine with canned providers."""

import pytest
from pydantic import ValidationError

from src.config import Settings
from src.search.base import IndexProvider, ProviderUnavailableError
from src.search.classifier import FilterOptions
from src.search.engine import TorrentSearchEngine
from src.search.fanout import ProviderFanout
from src.search.models import QualityTier, RawTorrent, SearchQuery

GiB = 1024**3


class CannedProvider(IndexProvider):
    """Returns the same rows for every query."""

    def __init__(self, name: str, rows: list[RawTorrent], error: Exception | None = None):
        super().__init__(f"https://{name}.example")
        self.name = name
        self.rows = rows
        self.error = error

    async def search(self, query, limit, media="movie", year=None):
        if self.error:
            raise self.error
        return list(self.rows)


def raw(name, info_hash, seeds, leeches=0, size=None, source="p"):
    return RawTorrent(
        name=name,
        magnet=f"magnet:?xt=urn:btih:{info_hash * 40}",
        seeds=seeds,
        leeches=leeches,
        size=size,
        source=source,
    )


def engine_for(*providers: IndexProvider) -> TorrentSearchEngine:
    fanout = ProviderFanout([lambda p=p: p for p in providers], timeout=1.0)
    return TorrentSearchEngine(fanout, FilterOptions())


class TestTorrentSearchEngine:
    """Tests for the full search pipeline."""

    @pytest.mark.asyncio
    async def test_episode_scenario(self):
        first = CannedProvider(
            "first",
            [
                raw("Severance.S01.COMPLETE.1080p", "1", 400, 20, size=25 * GiB),
                raw("Severance.S01E02.720p.CAM", "2", 40, 2),
            ],
        )
        second = CannedProvider(
            "second",
            [raw("Severance.S01E02.1080p.WEB-DL", "3", 50, 5, size=2 * GiB)],
        )
        third = CannedProvider(
            "third",
            [
                raw("Severance.S01E02.720p.HDTV", "4", 30, 10, size=GiB),
                # Same swarm as the 1080p row, fewer seeds
                raw("Severance.S01E02.1080p.WEB-DL", "3", 12, 5, size=2 * GiB),
            ],
        )

        results = await engine_for(first, second, third).search(
            SearchQuery(title="Severance", season=1, episode=2)
        )

        assert [(c.quality, c.ratio) for c in results] == [
            (QualityTier.FHD_1080P, 10.0),
            (QualityTier.HD_720P, 3.0),
        ]
        assert results[0].seeds == 50

    @pytest.mark.asyncio
    async def test_movie_relaxed_fallback(self):
        provider = CannedProvider("only", [raw("Dune.2021.1080p.BluRay", "5", 3, 1)])

        results = await engine_for(provider).search(SearchQuery(title="Dune", year=2021))

        assert len(results) == 1
        assert results[0].name == "Dune.2021.1080p.BluRay"
        assert results[0].seeds == 3

    @pytest.mark.asyncio
    async def test_all_providers_fail(self):
        broken = CannedProvider("broken", [], error=ProviderUnavailableError("down"))

        results = await engine_for(broken).search(SearchQuery(title="Dune"))

        assert results == []

    @pytest.mark.asyncio
    async def test_limit(self):
        rows = [
            raw("Dune.2021.2160p", "a", 300, 10),
            raw("Dune.2021.1080p", "b", 300, 20),
            raw("Dune.2021.720p", "c", 300, 30),
        ]
        engine = engine_for(CannedProvider("p", rows))

        results = await engine.search(SearchQuery(title="Dune", year=2021), limit=2)

        assert [c.quality for c in results] == [QualityTier.UHD_2160P, QualityTier.FHD_1080P]

    @pytest.mark.asyncio
    async def test_api_shape(self):
        engine = engine_for(CannedProvider("p", [raw("Dune.2021.1080p", "d", 60, 3, size=GiB)]))

        results = await engine.search(SearchQuery(title="Dune", year=2021))

        assert results[0].to_api() == {
            "name": "Dune.2021.1080p",
            "magnet": f"magnet:?xt=urn:btih:{'d' * 40}",
            "seeds": 60,
            "leeches": 3,
            "size": GiB,
            "quality": "1080P",
            "ratio": 20.0,
        }

    def test_from_settings(self):
        settings = Settings(enabled_providers=["yts"], search_limit=5)
        engine = TorrentSearchEngine.from_settings(settings)
        assert engine._default_limit == 5


class TestSearchQuery:
    """Tests for SearchQuery validation."""

    def test_title_stripped(self):
        assert SearchQuery(title="  Dune ").title == "Dune"

    def test_blank_title_rejected(self):
        with pytest.raises(ValidationError):
            SearchQuery(title="   ")
