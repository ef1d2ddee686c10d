"""Tests for log event scrubbing and request binding."""

import structlog

from src.logger import request_context, scrub_locators


class TestScrubLocators:
    """Tests for the scrub_locators processor."""

    def test_magnet_shortened(self):
        magnet = (
            "magnet:?xt=urn:btih:abcdef0123456789abcdef0123456789abcdef01"
            "&dn=Movie&tr=udp%3A%2F%2Ftracker.opentrackr.org%3A1337%2Fannounce"
        )
        event = scrub_locators(None, "info", {"event": "stream_start", "locator": magnet})
        assert event == {
            "event": "stream_start",
            "locator": "magnet:ABCDEF0123456789ABCDEF0123456789ABCDEF01",
        }

    def test_passkey_masked(self):
        url = "https://tracker.example/announce?passkey=0123456789abcdef0123"
        event = scrub_locators(None, "info", {"event": "x", "trackers": [url]})
        assert event["trackers"] == ["https://tracker.example/announce?passkey=***"]

    def test_sensitive_keys_masked(self):
        event = scrub_locators(None, "info", {"event": "x", "api_key": "k", "headers": {"Cookie": "c"}})
        assert event["api_key"] == "***"
        assert event["headers"] == {"Cookie": "***"}

    def test_plain_values_untouched(self):
        event = {"event": "search_complete", "title": "Dune", "returned": 3}
        assert scrub_locators(None, "info", dict(event)) == event


class TestRequestContext:
    """Tests for request_context."""

    def test_binds_and_unbinds(self):
        with request_context("GET", "/stream"):
            bound = structlog.contextvars.get_contextvars()
            assert bound["method"] == "GET"
            assert bound["path"] == "/stream"
            assert len(bound["request_id"]) == 8

        assert "request_id" not in structlog.contextvars.get_contextvars()
