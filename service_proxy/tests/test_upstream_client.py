"""
Unit tests for the upstream HTTP client and failure envelopes.
"""

import asyncio
import json

import httpx
import pytest

from transit_shared.errors import FeedParseError, UpstreamTimeout, UpstreamTransportError
from service_proxy.app.adapters.upstream_client import UpstreamClient, envelope_for_failure


def _client(handler, timeout=10.0):
    return UpstreamClient(timeout, transport=httpx.MockTransport(handler))


class TestUpstreamClient:
    """Test cases for UpstreamClient.fetch."""

    @pytest.mark.asyncio
    async def test_success_passes_through(self):
        def handler(request):
            assert request.method == "GET"
            return httpx.Response(200, content=b'{"stops":[]}', headers={"content-type": "application/json; charset=utf-8"})

        response = await _client(handler).fetch("https://upstream.test/locations?query=berlin")

        assert response.status == 200
        assert response.content_type == "application/json; charset=utf-8"
        assert response.body == b'{"stops":[]}'
        assert response.is_success is True

    @pytest.mark.asyncio
    async def test_error_status_is_not_reinterpreted(self):
        def handler(request):
            return httpx.Response(404, content=b'{"foo":1}', headers={"content-type": "application/json"})

        response = await _client(handler).fetch("https://upstream.test/stops/x/departures")

        assert response.status == 404
        assert response.body == b'{"foo":1}'
        assert response.is_success is False

    @pytest.mark.asyncio
    async def test_missing_content_type_falls_back(self):
        def handler(request):
            return httpx.Response(200, content=b"<rss/>")

        client = _client(handler)

        assert (await client.fetch("https://feeds.test/a")).content_type == "application/json"
        assert (await client.fetch("https://feeds.test/a", default_content_type="application/xml")).content_type == "application/xml"

    @pytest.mark.asyncio
    async def test_follows_redirects(self):
        def handler(request):
            if request.url.path == "/old":
                return httpx.Response(301, headers={"location": "https://feeds.test/new"})
            return httpx.Response(200, content=b"moved")

        response = await _client(handler).fetch("https://feeds.test/old")

        assert response.status == 200
        assert response.body == b"moved"

    @pytest.mark.asyncio
    async def test_slow_upstream_times_out(self):
        async def handler(request):
            await asyncio.sleep(5)
            return httpx.Response(200)

        with pytest.raises(UpstreamTimeout) as exc_info:
            await _client(handler, timeout=0.05).fetch("https://upstream.test/slow")

        assert exc_info.value.status_code == 504

    @pytest.mark.asyncio
    async def test_httpx_timeout_maps_to_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("read timed out", request=request)

        with pytest.raises(UpstreamTimeout):
            await _client(handler).fetch("https://upstream.test/slow")

    @pytest.mark.asyncio
    async def test_connection_error_maps_to_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(UpstreamTransportError) as exc_info:
            await _client(handler).fetch("https://upstream.test/down")

        assert exc_info.value.status_code == 502
        assert exc_info.value.details == {"url": "https://upstream.test/down"}


    @pytest.mark.asyncio
    async def test_idna_error_maps_to_transport_error(self):
        def handler(request):
            raise UnicodeError("Malformed A-label")

        with pytest.raises(UpstreamTransportError) as exc_info:
            await _client(handler).fetch("http://feeds.test/x")

        assert exc_info.value.status_code == 502


class TestFailureEnvelopes:
    """Test cases for envelope_for_failure."""

    @pytest.mark.parametrize(
        "failure, status, message",
        [
            (UpstreamTimeout("slow"), 504, "Upstream timeout"),
            (UpstreamTransportError("refused"), 502, "Upstream error"),
            (FeedParseError("bad xml"), 502, "Upstream feed could not be parsed"),
        ],
    )
    def test_failure_variants(self, failure, status, message):
        envelope = envelope_for_failure(failure, 8, clock=lambda: 100.0)

        assert envelope.status == status
        assert envelope.content_type == "application/json"
        assert json.loads(envelope.body)["error"] == message
        assert json.loads(envelope.body)["code"] == failure.code
        assert envelope.expires_at == 108.0
