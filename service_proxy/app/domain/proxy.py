"""
Proxy orchestration: cache lookup, coalesced upstream fetch, cache publish.
"""

import time
from typing import TYPE_CHECKING, Callable, Optional

from transit_shared.errors import UpstreamFailure
from transit_shared.logging import get_logger

from service_proxy.app.adapters.upstream_client import (
    DEFAULT_CONTENT_TYPE,
    UpstreamClient,
    UpstreamResponse,
    envelope_for_failure,
)
from service_proxy.app.caching.coalescer import RequestCoalescer
from service_proxy.app.caching.response_cache import Clock, ResponseCache, ResponseEnvelope

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from transit_shared.metrics import MetricsCollector


ResponseTransform = Callable[[UpstreamResponse], UpstreamResponse]


class ProxyOrchestrator:
    """
    Entry point used by every proxied route.

    ``resolve`` returns a cached envelope when one is live, otherwise joins or
    starts the single upstream fetch for the key. The owning fetch converts
    its outcome (any upstream status, timeout, transport failure, transform
    failure) into an envelope, publishes it to the cache and only then
    releases the key, so nothing past this class ever sees an exception from
    the fetch pipeline.
    """

    def __init__(
        self,
        cache: ResponseCache,
        coalescer: RequestCoalescer[ResponseEnvelope],
        upstream: UpstreamClient,
        *,
        clock: Clock = time.time,
        failure_ttl_seconds: Optional[float] = None,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.cache = cache
        self.coalescer = coalescer
        self.upstream = upstream
        self.clock = clock
        self.failure_ttl_seconds = failure_ttl_seconds
        self.metrics = metrics
        self.logger = get_logger("proxy.orchestrator")

    async def resolve(
        self,
        key: str,
        url: str,
        ttl_seconds: float,
        *,
        transform: Optional[ResponseTransform] = None,
        default_content_type: str = DEFAULT_CONTENT_TYPE,
        route: str = "default",
    ) -> ResponseEnvelope:
        """Return the cached or freshly fetched envelope for ``key``."""
        cached = self.cache.get(key)
        if cached is not None:
            self._increment("cache_hits_total", route=route)
            self.logger.debug("Response cache hit", key=key, route=route)
            return cached

        self._increment("cache_misses_total", route=route)

        async def fetch_and_store() -> ResponseEnvelope:
            envelope = await self._fetch_envelope(url, ttl_seconds, transform, default_content_type, route)
            self.cache.put(key, envelope)
            self._set_gauge("cache_entries", len(self.cache))
            return envelope

        envelope, state = await self.coalescer.run(key, fetch_and_store)
        if state == "wait":
            self._increment("coalesced_requests_total", route=route)
            self.logger.debug("Coalesced onto in-flight fetch", key=key, route=route)
        self._set_gauge("inflight_requests", len(self.coalescer))
        return envelope

    async def _fetch_envelope(
        self,
        url: str,
        ttl_seconds: float,
        transform: Optional[ResponseTransform],
        default_content_type: str,
        route: str,
    ) -> ResponseEnvelope:
        self._set_gauge("inflight_requests", len(self.coalescer))
        start = time.perf_counter()
        try:
            response = await self.upstream.fetch(url, default_content_type=default_content_type)
            if transform is not None:
                response = transform(response)
        except UpstreamFailure as failure:
            self._record_upstream(route, failure.code.lower(), start)
            self.logger.warning(
                "Upstream fetch failed",
                url=url,
                route=route,
                code=failure.code,
                status_code=failure.status_code,
                reason=failure.reason,
            )
            return envelope_for_failure(failure, self._failure_ttl(ttl_seconds), clock=self.clock)

        self._record_upstream(route, "ok" if response.is_success else "http_status", start)
        self.logger.info(
            "Upstream fetch completed",
            url=url,
            route=route,
            status_code=response.status,
            bytes=len(response.body),
            duration_ms=round((time.perf_counter() - start) * 1000, 2),
        )
        return response.to_envelope(ttl_seconds, clock=self.clock)

    def _failure_ttl(self, ttl_seconds: float) -> float:
        if self.failure_ttl_seconds is None:
            return ttl_seconds
        return self.failure_ttl_seconds

    def _record_upstream(self, route: str, outcome: str, start: float) -> None:
        if not self.metrics:
            return
        self.metrics.increment_counter("upstream_requests_total", route=route, outcome=outcome)
        self.metrics.observe_histogram(
            "upstream_request_duration_seconds",
            time.perf_counter() - start,
            route=route,
        )

    def _increment(self, metric_name: str, **labels) -> None:
        if self.metrics:
            self.metrics.increment_counter(metric_name, **labels)

    def _set_gauge(self, metric_name: str, value: float) -> None:
        if self.metrics:
            self.metrics.set_gauge(metric_name, value)
