"""
Tests for HttpFetcher.
Uses httpx MockTransport to avoid real network calls.
"""

import httpx
import pytest

from sitescan.engines.crawler.fetcher import Fetcher, FetchError, HttpFetcher

RELAY = "https://relay.example/fetch?target={url}"


def client_for(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler), follow_redirects=True)


class TestHttpFetcher:

    async def test_direct_fetch(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>ok</html>", headers={"content-type": "text/html"})

        async with HttpFetcher(client=client_for(handler), endpoints=["{url}"]) as fetcher:
            result = await fetcher.fetch("https://example.com/")

        assert result.status_code == 200
        assert result.content == "<html>ok</html>"
        assert result.content_type == "text/html"
        assert result.elapsed_ms >= 0

    async def test_non_200_is_returned_not_raised(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404, text="missing")

        fetcher = HttpFetcher(client=client_for(handler), endpoints=["{url}"])
        result = await fetcher.fetch("https://example.com/nope")

        assert result.status_code == 404

    async def test_falls_back_to_relay_on_connect_error(self):
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(str(request.url))
            if request.url.host == "example.com":
                raise httpx.ConnectError("refused", request=request)
            return httpx.Response(200, text="relayed")

        fetcher = HttpFetcher(client=client_for(handler), endpoints=["{url}", RELAY])
        result = await fetcher.fetch("https://example.com/a")

        assert result.content == "relayed"
        assert result.final_url == "https://example.com/a"
        assert seen[1].startswith("https://relay.example/fetch?target=https%3A%2F%2Fexample.com%2Fa")

    async def test_relay_error_status_moves_to_next_endpoint(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "relay.example":
                return httpx.Response(502, text="bad gateway")
            return httpx.Response(200, text="direct")

        fetcher = HttpFetcher(client=client_for(handler), endpoints=[RELAY, "{url}"])
        result = await fetcher.fetch("https://example.com/")

        assert result.content == "direct"

    async def test_all_endpoints_failing_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        fetcher = HttpFetcher(client=client_for(handler), endpoints=["{url}", RELAY])

        with pytest.raises(FetchError) as exc_info:
            await fetcher.fetch("https://example.com/")
        assert exc_info.value.message == "request timed out"

    def test_satisfies_protocol(self):
        fetcher = HttpFetcher(client=client_for(lambda r: httpx.Response(200)))
        assert isinstance(fetcher, Fetcher)

    def test_endpoint_url_encodes_target_for_relays(self):
        assert HttpFetcher.endpoint_url("{url}", "https://x.org/?a=1") == "https://x.org/?a=1"
        assert HttpFetcher.endpoint_url(RELAY, "https://x.org/?a=1") == (
            "https://relay.example/fetch?target=https%3A%2F%2Fx.org%2F%3Fa%3D1"
        )
