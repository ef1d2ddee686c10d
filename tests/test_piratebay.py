"""Tests for the PirateBay provider.

Covers the JSON API path, HTML mirror fallback, magnet extraction,
size parsing and error handling.
"""

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from src.search.base import ProviderError, ProviderUnavailableError, build_magnet_link
from src.search.piratebay import (
    API_CATEGORIES,
    PIRATEBAY_MIRRORS,
    PirateBayProvider,
    extract_magnet_link,
    parse_size,
    search_top_torrent,
)

# =============================================================================
# Sample HTML Fixtures
# =============================================================================

SAMPLE_SEARCH_HTML = """
<!DOCTYPE html>
<html>
<head><title>PirateBay Search</title></head>
<body>
<table id="searchResult">
    <thead>
        <tr>
            <th>Type</th>
            <th>Name</th>
            <th>Uploaded</th>
            <th>Size</th>
            <th>Seeders</th>
            <th>Leechers</th>
        </tr>
    </thead>
    <tbody>
        <tr>
            <td class="vertTh">
                <a href="/browse/207">Video (HD - Movies)</a>
            </td>
            <td>
                <div class="detName">
                    <a href="/torrent/123456" class="detLink">Dune.2021.1080p.BluRay.x264</a>
                </div>
                <a href="magnet:?xt=urn:btih:ABCD1234567890ABCD1234567890ABCD12345678&dn=Dune.2021.1080p.BluRay.x264" title="Download this torrent using magnet">
                    <img src="/static/img/icon-magnet.gif" alt="Magnet link">
                </a>
                <font class="detDesc">
                    Uploaded 01-15, Size 4.37 GiB, ULed by trusted_uploader
                </font>
            </td>
            <td>01-15</td>
            <td>4.37 GiB</td>
            <td>1500</td>
            <td>200</td>
        </tr>
        <tr>
            <td class="vertTh">
                <a href="/browse/201">Video (Movies)</a>
            </td>
            <td>
                <div class="detName">
                    <a href="/torrent/789012" class="detLink">Dune.2021.720p.WEB-DL.x264</a>
                </div>
                <a href="magnet:?xt=urn:btih:EFGH5678901234EFGH5678901234EFGH56789012&dn=Dune.2021.720p.WEB-DL.x264">
                    <img src="/static/img/icon-magnet.gif">
                </a>
                <font class="detDesc">
                    Uploaded 01-10, Size 2.1 GiB, ULed by another_uploader
                </font>
            </td>
            <td>01-10</td>
            <td>2.1 GiB</td>
            <td>800</td>
            <td>50</td>
        </tr>
        <tr>
            <td class="vertTh">
                <a href="/browse/207">Video (HD - Movies)</a>
            </td>
            <td>
                <div class="detName">
                    <a href="/torrent/345678" class="detLink">Dune.2021.2160p.4K.UHD.HDR.x265</a>
                </div>
                <a href="magnet:?xt=urn:btih:IJKL9012345678IJKL9012345678IJKL90123456&dn=Dune.2021.2160p.4K.UHD.HDR.x265">
                    <img src="/static/img/icon-magnet.gif">
                </a>
                <font class="detDesc">
                    Uploaded 01-20, Size 15.2 GiB, ULed by premium_uploader
                </font>
            </td>
            <td>01-20</td>
            <td>15.2 GiB</td>
            <td>300</td>
            <td>100</td>
        </tr>
    </tbody>
</table>
</body>
</html>
"""

SAMPLE_EMPTY_HTML = """
<!DOCTYPE html>
<html>
<head><title>PirateBay Search</title></head>
<body>
<table id="searchResult">
    <thead>
        <tr><th>Type</th><th>Name</th></tr>
    </thead>
    <tbody>
    </tbody>
</table>
<div>No hits. Try adding an asterisk (*) to your search</div>
</body>
</html>
"""

SAMPLE_CLOUDFLARE_HTML = """
<!DOCTYPE html>
<html>
<head><title>Just a moment...</title></head>
<body>
<div class="cf-browser-verification">
    Checking your browser before accessing Cloudflare challenge page.
</div>
</body>
</html>
"""


SAMPLE_API_RESPONSE = [
    {
        "id": "1",
        "name": "Dune.2021.1080p.BluRay.x264",
        "info_hash": "ABCD1234567890ABCD1234567890ABCD12345678",
        "seeders": "1500",
        "leechers": "200",
        "size": "4692251402",
    },
    {
        "id": "2",
        "name": "Dune.2021.720p.WEB-DL.x264",
        "info_hash": "EFAB5678901234EFAB5678901234EFAB56789012",
        "seeders": "800",
        "leechers": "50",
        "size": "2254857830",
    },
    {
        "id": "3",
        "name": "Broken row",
        "info_hash": "short",
        "seeders": "10",
        "leechers": "1",
        "size": "0",
    },
]

NO_RESULTS_API_RESPONSE = [
    {"id": "0", "name": "No results returned", "info_hash": "0" * 40, "seeders": "0"}
]


def api_transport(payload=None, status_code: int = 200, calls: list | None = None):
    """MockTransport answering the q.php endpoint."""

    def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(request)
        return httpx.Response(status_code, json=payload if payload is not None else [])

    return httpx.MockTransport(handler)


def use_transport(provider: PirateBayProvider, transport: httpx.MockTransport) -> None:
    provider._build_client = lambda: httpx.AsyncClient(transport=transport)


# =============================================================================
# Tests for Helper Functions
# =============================================================================


class TestParseSize:
    """Tests for parse_size function."""

    def test_parse_gib(self):
        assert parse_size("4.37 GiB") == pytest.approx(4.37 * 1024**3, rel=0.01)

    def test_parse_gb(self):
        assert parse_size("4.37 GB") == pytest.approx(4.37 * 1024**3, rel=0.01)

    def test_parse_mb(self):
        assert parse_size("700 MB") == 700 * 1024**2

    def test_parse_tb(self):
        assert parse_size("1.5 TB") == pytest.approx(1.5 * 1024**4, rel=0.01)

    def test_parse_with_comma(self):
        assert parse_size("4,37 GB") == pytest.approx(4.37 * 1024**3, rel=0.01)

    def test_parse_invalid(self):
        assert parse_size("N/A") == 0


class TestBuildMagnetLink:
    """Tests for build_magnet_link function."""

    def test_basic_magnet(self):
        magnet = build_magnet_link("ABCD1234567890ABCD1234567890ABCD12345678")
        assert magnet.startswith("magnet:?xt=urn:btih:ABCD1234567890ABCD1234567890ABCD12345678")
        assert "&tr=" in magnet

    def test_magnet_with_name(self):
        magnet = build_magnet_link("ABCD1234567890ABCD1234567890ABCD12345678", "Test Movie 2021")
        assert "&dn=Test+Movie+2021" in magnet

    def test_custom_trackers(self):
        magnet = build_magnet_link("ABCD", trackers=["udp://a:1", "udp://b:2"])
        assert magnet.count("&tr=") == 2


class TestExtractMagnetLink:
    """Tests for extract_magnet_link function."""

    def test_extract_from_anchor(self):
        from bs4 import BeautifulSoup

        html = '<div><a href="magnet:?xt=urn:btih:ABCD1234">Magnet</a></div>'
        element = BeautifulSoup(html, "lxml").select_one("div")
        assert element is not None
        assert extract_magnet_link(element).startswith("magnet:")

    def test_no_magnet_found(self):
        from bs4 import BeautifulSoup

        html = '<div><a href="http://example.com">Link</a></div>'
        element = BeautifulSoup(html, "lxml").select_one("div")
        assert element is not None
        assert extract_magnet_link(element) == ""


# =============================================================================
# Tests for PirateBayProvider
# =============================================================================


class TestPirateBayProvider:
    """Tests for PirateBayProvider class."""

    def test_init_default(self):
        provider = PirateBayProvider()
        assert provider.base_url == "https://apibay.org"
        assert provider.name == "piratebay"
        assert provider._client is None

    def test_init_custom_url(self):
        provider = PirateBayProvider(base_url="https://proxy.example/")
        assert provider.base_url == "https://proxy.example"

    @pytest.mark.asyncio
    async def test_context_manager(self):
        async with PirateBayProvider() as provider:
            assert provider._client is not None
        assert provider._client is None

    def test_client_property_not_initialized(self):
        provider = PirateBayProvider()
        with pytest.raises(RuntimeError, match="not initialized"):
            _ = provider.client

    def test_parse_search_results(self):
        results = PirateBayProvider()._parse_search_results(SAMPLE_SEARCH_HTML)
        assert len(results) == 3
        assert results[0].name == "Dune.2021.1080p.BluRay.x264"
        assert results[0].seeds == 1500
        assert results[0].leeches == 200
        assert results[0].size == pytest.approx(4.37 * 1024**3, rel=0.01)
        assert results[0].magnet.startswith("magnet:")
        assert results[0].source == "piratebay"

    def test_parse_empty_results(self):
        assert PirateBayProvider()._parse_search_results(SAMPLE_EMPTY_HTML) == []

    @pytest.mark.asyncio
    async def test_api_search(self):
        calls: list[httpx.Request] = []
        provider = PirateBayProvider()
        use_transport(provider, api_transport(SAMPLE_API_RESPONSE, calls=calls))

        async with provider:
            results = await provider.search("Dune 2021", limit=10, media="movie")

        # Row with a malformed hash is skipped
        assert [r.name for r in results] == [
            "Dune.2021.1080p.BluRay.x264",
            "Dune.2021.720p.WEB-DL.x264",
        ]
        assert results[0].seeds == 1500
        assert results[0].size == 4692251402
        assert "ABCD1234567890ABCD1234567890ABCD12345678" in results[0].magnet

        assert calls[0].url.path == "/q.php"
        assert calls[0].url.params["q"] == "Dune 2021"
        assert calls[0].url.params["cat"] == API_CATEGORIES["movie"]

    @pytest.mark.asyncio
    async def test_api_tv_categories(self):
        calls: list[httpx.Request] = []
        provider = PirateBayProvider()
        use_transport(provider, api_transport(SAMPLE_API_RESPONSE, calls=calls))

        async with provider:
            await provider.search("Show S01E02", limit=10, media="tv")

        assert calls[0].url.params["cat"] == API_CATEGORIES["tv"]

    @pytest.mark.asyncio
    async def test_api_no_results_placeholder(self):
        provider = PirateBayProvider()
        use_transport(provider, api_transport(NO_RESULTS_API_RESPONSE))

        async with provider:
            results = await provider.search("nothing here", limit=10, media="movie")

        assert results == []

    @pytest.mark.asyncio
    async def test_search_respects_limit(self):
        provider = PirateBayProvider()
        use_transport(provider, api_transport(SAMPLE_API_RESPONSE))

        async with provider:
            results = await provider.search("Dune", limit=1, media="movie")

        assert len(results) == 1
        assert results[0].seeds == 1500

    @pytest.mark.asyncio
    async def test_search_sorted_by_seeds(self):
        with (
            patch.object(
                PirateBayProvider,
                "_search_api",
                new_callable=AsyncMock,
                side_effect=ProviderUnavailableError("API unavailable"),
            ),
            patch.object(PirateBayProvider, "_fetch_page", new_callable=AsyncMock) as mock_fetch,
        ):
            mock_fetch.return_value = SAMPLE_SEARCH_HTML

            async with PirateBayProvider() as provider:
                results = await provider.search("Dune 2021", limit=10, media="movie")

        for i in range(len(results) - 1):
            assert results[i].seeds >= results[i + 1].seeds


# =============================================================================
# Tests for Error Handling
# =============================================================================


class TestErrorHandling:
    """Tests for error handling.

    The API is tried first; HTML mirrors are only hit when it fails.
    """

    @pytest.mark.asyncio
    async def test_api_error_falls_back_to_html(self):
        with (
            patch.object(
                PirateBayProvider,
                "_search_api",
                new_callable=AsyncMock,
                side_effect=ProviderUnavailableError("API unavailable"),
            ),
            patch.object(PirateBayProvider, "_fetch_page", new_callable=AsyncMock) as mock_fetch,
        ):
            mock_fetch.return_value = SAMPLE_SEARCH_HTML

            async with PirateBayProvider() as provider:
                results = await provider.search("test", limit=10, media="movie")

        assert len(results) == 3

    @pytest.mark.asyncio
    async def test_malformed_api_payload_falls_back(self):
        provider = PirateBayProvider()
        use_transport(provider, api_transport({"error": "bad"}))

        with patch.object(PirateBayProvider, "_fetch_page", new_callable=AsyncMock) as mock_fetch:
            mock_fetch.return_value = SAMPLE_SEARCH_HTML
            async with provider:
                results = await provider.search("test", limit=10, media="movie")

        assert len(results) == 3

    @pytest.mark.asyncio
    async def test_html_category_in_url(self):
        with (
            patch.object(
                PirateBayProvider,
                "_search_api",
                new_callable=AsyncMock,
                side_effect=ProviderUnavailableError("API unavailable"),
            ),
            patch.object(PirateBayProvider, "_fetch_page", new_callable=AsyncMock) as mock_fetch,
        ):
            mock_fetch.return_value = SAMPLE_SEARCH_HTML

            async with PirateBayProvider() as provider:
                await provider.search("test", limit=10, media="tv")

        assert mock_fetch.call_args[0][0].endswith("/205")

    @pytest.mark.asyncio
    async def test_mirrors_tried_in_order(self):
        call_count = 0

        async def mock_fetch(*args, **kwargs):
            nonlocal call_count
            call_count += 1
            if call_count < 3:
                raise ProviderUnavailableError(f"Mirror {call_count} unavailable")
            return SAMPLE_SEARCH_HTML

        with (
            patch.object(
                PirateBayProvider,
                "_search_api",
                new_callable=AsyncMock,
                side_effect=ProviderUnavailableError("API unavailable"),
            ),
            patch.object(PirateBayProvider, "_fetch_page", side_effect=mock_fetch),
        ):
            async with PirateBayProvider() as provider:
                results = await provider.search("Dune 2021", limit=10, media="movie")

        assert len(results) == 3
        assert call_count == 3

    @pytest.mark.asyncio
    async def test_all_mirrors_fail(self):
        async def mock_fetch(*args, **kwargs):
            raise ProviderUnavailableError("Mirror unavailable")

        with (
            patch.object(
                PirateBayProvider,
                "_search_api",
                new_callable=AsyncMock,
                side_effect=ProviderUnavailableError("API unavailable"),
            ),
            patch.object(PirateBayProvider, "_fetch_page", side_effect=mock_fetch),
        ):
            async with PirateBayProvider() as provider:
                with pytest.raises(ProviderUnavailableError, match="All PirateBay mirrors"):
                    await provider.search("Dune 2021", limit=10, media="movie")

    @pytest.mark.asyncio
    async def test_cloudflare_page_is_unavailable(self):
        provider = PirateBayProvider()
        use_transport(
            provider,
            httpx.MockTransport(lambda request: httpx.Response(200, text=SAMPLE_CLOUDFLARE_HTML)),
        )

        async with provider:
            with pytest.raises(ProviderUnavailableError, match="Cloudflare"):
                await provider._fetch_page("https://thepiratebay.org/search/x/0/7/201")

    @pytest.mark.asyncio
    async def test_gateway_errors_are_retried(self):
        calls: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            if len(calls) < 2:
                return httpx.Response(502)
            return httpx.Response(200, json=SAMPLE_API_RESPONSE)

        provider = PirateBayProvider()
        use_transport(provider, httpx.MockTransport(handler))

        with patch("src.search.piratebay.API_RETRY_DELAY", 0):
            async with provider:
                results = await provider.search("Dune", limit=10, media="movie")

        assert len(calls) == 2
        assert len(results) == 2

    @pytest.mark.asyncio
    async def test_client_error_is_provider_error(self):
        provider = PirateBayProvider()
        use_transport(provider, api_transport(status_code=404))

        async with provider:
            with pytest.raises(ProviderError):
                await provider._search_api("Dune", "movie")


# =============================================================================
# Tests for Convenience Functions
# =============================================================================


class TestSearchTopTorrent:
    """Tests for search_top_torrent."""

    @pytest.mark.asyncio
    async def test_returns_best_hit(self):
        with patch.object(PirateBayProvider, "_search_api", new_callable=AsyncMock) as mock_api:
            mock_api.return_value = SAMPLE_API_RESPONSE

            result = await search_top_torrent("Dune", 2021)

        assert result is not None
        assert result.name == "Dune.2021.1080p.BluRay.x264"
        assert mock_api.call_args[0][0] == "Dune 2021 1080p"

    @pytest.mark.asyncio
    async def test_failure_returns_none(self):
        with (
            patch.object(
                PirateBayProvider,
                "_search_api",
                new_callable=AsyncMock,
                side_effect=ProviderUnavailableError("API unavailable"),
            ),
            patch.object(
                PirateBayProvider,
                "_fetch_page",
                new_callable=AsyncMock,
                side_effect=ProviderUnavailableError("down"),
            ),
        ):
            assert await search_top_torrent("Dune") is None


# =============================================================================
# Tests for Constants
# =============================================================================


class TestConstants:
    """Tests for module constants."""

    def test_mirrors_list_not_empty(self):
        assert len(PIRATEBAY_MIRRORS) > 0

    def test_mirrors_are_valid_urls(self):
        for mirror in PIRATEBAY_MIRRORS:
            assert mirror.startswith("https://")
