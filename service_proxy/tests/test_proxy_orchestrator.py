"""
Unit tests for proxy orchestration: caching, coalescing and failure envelopes.
"""

import asyncio
import json
from unittest.mock import AsyncMock

import httpx
import pytest

from transit_shared.errors import FeedParseError
from transit_shared.metrics import MetricsCollector
from service_proxy.app.adapters.upstream_client import UpstreamClient, UpstreamResponse
from service_proxy.app.caching.coalescer import RequestCoalescer
from service_proxy.app.caching.response_cache import ResponseCache
from service_proxy.app.domain.proxy import ProxyOrchestrator


class FakeClock:
    """Deterministic clock for expiry tests."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class GatedUpstream:
    """Upstream transport that holds every request until released."""

    def __init__(self, status=200, body=b'{"departures":[]}', content_type="application/json"):
        self.status = status
        self.body = body
        self.content_type = content_type
        self.calls = []
        self.release = asyncio.Event()
        self.release.set()

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(str(request.url))
        await self.release.wait()
        return httpx.Response(self.status, content=self.body, headers={"content-type": self.content_type})

    def count(self, url: str) -> int:
        return sum(1 for called in self.calls if called == url)


def _orchestrator(handler, clock, *, timeout=10.0, failure_ttl_seconds=None, metrics=None):
    return ProxyOrchestrator(
        ResponseCache(clock=clock),
        RequestCoalescer(),
        UpstreamClient(timeout, transport=httpx.MockTransport(handler)),
        clock=clock,
        failure_ttl_seconds=failure_ttl_seconds,
        metrics=metrics,
    )


URL_A = "https://upstream.test/stops/900100003/departures"
URL_B = "https://upstream.test/stations/8011160/departures"


class TestProxyOrchestrator:
    """Test cases for ProxyOrchestrator.resolve."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def upstream(self):
        return GatedUpstream()

    @pytest.fixture
    def orchestrator(self, upstream, clock):
        return _orchestrator(upstream, clock)

    @pytest.mark.asyncio
    async def test_concurrent_misses_fetch_once(self, orchestrator, upstream):
        upstream.release.clear()

        callers = [asyncio.create_task(orchestrator.resolve(URL_A, URL_A, 8)) for _ in range(10)]
        await asyncio.sleep(0.01)
        upstream.release.set()
        envelopes = await asyncio.gather(*callers)

        assert upstream.count(URL_A) == 1
        assert all(envelope is envelopes[0] for envelope in envelopes)
        assert envelopes[0].body == b'{"departures":[]}'

    @pytest.mark.asyncio
    async def test_hit_makes_no_upstream_call(self, orchestrator, upstream):
        first = await orchestrator.resolve(URL_A, URL_A, 8)
        second = await orchestrator.resolve(URL_A, URL_A, 8)
        third = await orchestrator.resolve(URL_A, URL_A, 8)

        assert upstream.count(URL_A) == 1
        assert first is second is third

    @pytest.mark.asyncio
    async def test_expiry_triggers_fresh_fetch(self, orchestrator, upstream, clock):
        first = await orchestrator.resolve(URL_A, URL_A, 8)
        assert first.expires_at == clock.now + 8

        clock.advance(7.5)
        assert await orchestrator.resolve(URL_A, URL_A, 8) is first
        assert upstream.count(URL_A) == 1

        clock.advance(0.5)
        refreshed = await orchestrator.resolve(URL_A, URL_A, 8)
        assert refreshed is not first
        assert upstream.count(URL_A) == 2

    @pytest.mark.asyncio
    async def test_upstream_error_status_passes_through_and_is_cached(self, clock):
        upstream = GatedUpstream(status=404, body=b'{"foo":1}')
        orchestrator = _orchestrator(upstream, clock)

        envelope = await orchestrator.resolve(URL_A, URL_A, 30)

        assert envelope.status == 404
        assert envelope.body == b'{"foo":1}'
        assert orchestrator.cache.get(URL_A) is envelope

    @pytest.mark.asyncio
    async def test_timeout_envelope_is_cached_for_route_ttl(self, clock):
        calls = 0

        async def handler(request):
            nonlocal calls
            calls += 1
            await asyncio.sleep(5)
            return httpx.Response(200)

        orchestrator = _orchestrator(handler, clock, timeout=0.05)

        envelope = await orchestrator.resolve(URL_A, URL_A, 30)

        assert envelope.status == 504
        assert envelope.content_type == "application/json"
        assert json.loads(envelope.body)["error"] == "Upstream timeout"

        clock.advance(29.9)
        assert await orchestrator.resolve(URL_A, URL_A, 30) is envelope
        assert calls == 1

        clock.advance(1)
        assert orchestrator.cache.get(URL_A) is None

    @pytest.mark.asyncio
    async def test_transport_error_becomes_502(self, clock):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        orchestrator = _orchestrator(handler, clock)

        envelope = await orchestrator.resolve(URL_A, URL_A, 8)

        assert envelope.status == 502
        assert json.loads(envelope.body)["error"] == "Upstream error"
        assert orchestrator.cache.get(URL_A) is envelope

    @pytest.mark.asyncio
    async def test_request_build_error_becomes_cached_502(self, clock):
        def handler(request):
            raise UnicodeError("Malformed A-label")

        orchestrator = _orchestrator(handler, clock)

        envelopes = await asyncio.gather(*(orchestrator.resolve(URL_A, URL_A, 8) for _ in range(3)))

        assert all(envelope.status == 502 for envelope in envelopes)
        assert orchestrator.cache.get(URL_A) is envelopes[0]
        assert len(orchestrator.coalescer) == 0

    @pytest.mark.asyncio
    async def test_failure_ttl_override(self, clock):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        orchestrator = _orchestrator(handler, clock, failure_ttl_seconds=2)

        envelope = await orchestrator.resolve(URL_A, URL_A, 300)

        assert envelope.expires_at == clock.now + 2

    @pytest.mark.asyncio
    async def test_failure_ttl_override_leaves_success_ttl(self, upstream, clock):
        orchestrator = _orchestrator(upstream, clock, failure_ttl_seconds=2)

        envelope = await orchestrator.resolve(URL_A, URL_A, 300)

        assert envelope.expires_at == clock.now + 300

    @pytest.mark.asyncio
    async def test_key_isolation(self, clock):
        release_b = asyncio.Event()
        calls = []

        async def handler(request):
            url = str(request.url)
            calls.append(url)
            if url == URL_B:
                await release_b.wait()
            return httpx.Response(200, content=url.encode())

        orchestrator = _orchestrator(handler, clock)

        pending_b = asyncio.create_task(orchestrator.resolve(URL_B, URL_B, 8))
        await asyncio.sleep(0.01)

        envelope_a = await asyncio.wait_for(orchestrator.resolve(URL_A, URL_A, 8), timeout=1.0)

        assert envelope_a.body == URL_A.encode()
        assert not pending_b.done()
        assert calls.count(URL_B) == 1

        release_b.set()
        envelope_b = await pending_b
        assert envelope_b.body == URL_B.encode()
        assert calls.count(URL_B) == 1

    @pytest.mark.asyncio
    async def test_transform_applied_before_caching(self, orchestrator, upstream):
        def shout(response: UpstreamResponse) -> UpstreamResponse:
            return UpstreamResponse(response.status, "text/plain", response.body.upper())

        envelope = await orchestrator.resolve("key|format=json", URL_A, 300, transform=shout)

        assert envelope.body == b'{"DEPARTURES":[]}'
        assert orchestrator.cache.get("key|format=json") is envelope

    @pytest.mark.asyncio
    async def test_transform_failure_becomes_cached_502(self, orchestrator):
        def broken(response: UpstreamResponse) -> UpstreamResponse:
            raise FeedParseError("unexpected end of document")

        envelope = await orchestrator.resolve("feed|format=json", URL_A, 300, transform=broken)

        assert envelope.status == 502
        assert json.loads(envelope.body)["code"] == "FEED_PARSE_ERROR"
        assert orchestrator.cache.get("feed|format=json") is envelope

    @pytest.mark.asyncio
    async def test_settled_key_rechecks_cache(self, orchestrator, upstream):
        await orchestrator.resolve(URL_A, URL_A, 8)

        assert len(orchestrator.coalescer) == 0
        orchestrator.upstream.fetch = AsyncMock(side_effect=AssertionError("should hit cache"))
        envelope = await orchestrator.resolve(URL_A, URL_A, 8)

        assert envelope.status == 200


class TestOrchestratorMetrics:
    """Metrics recorded by the orchestrator."""

    @pytest.mark.asyncio
    async def test_hits_misses_and_coalesced_counts(self):
        clock = FakeClock()
        upstream = GatedUpstream()
        metrics = MetricsCollector("proxy")
        orchestrator = _orchestrator(upstream, clock, metrics=metrics)

        upstream.release.clear()
        callers = [asyncio.create_task(orchestrator.resolve(URL_A, URL_A, 8, route="stops")) for _ in range(3)]
        await asyncio.sleep(0.01)
        upstream.release.set()
        await asyncio.gather(*callers)
        await orchestrator.resolve(URL_A, URL_A, 8, route="stops")

        registry = metrics.registry
        assert registry.get_sample_value("cache_misses_total", {"route": "stops"}) == 3
        assert registry.get_sample_value("cache_hits_total", {"route": "stops"}) == 1
        assert registry.get_sample_value("coalesced_requests_total", {"route": "stops"}) == 2
        assert registry.get_sample_value("upstream_requests_total", {"route": "stops", "outcome": "ok"}) == 1
        assert registry.get_sample_value("cache_entries") == 1
