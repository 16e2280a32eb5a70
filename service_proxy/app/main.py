"""
Caching proxy service for the Transit Proxy.
"""

from typing import Any, Dict, Optional
from urllib.parse import quote, urlencode

import httpx
from fastapi import Query, Request, Response

from transit_shared.base_service import BaseService
from transit_shared.config import ProxyConfig
from transit_shared.errors import ValidationError

from service_proxy.app.adapters.upstream_client import UpstreamClient
from service_proxy.app.caching.coalescer import RequestCoalescer
from service_proxy.app.caching.response_cache import ResponseCache, ResponseEnvelope
from service_proxy.app.domain.destination_guard import is_allowed
from service_proxy.app.domain.proxy import ProxyOrchestrator
from service_proxy.app.feeds.normalizer import normalize_feed_response


FEED_DEFAULT_CONTENT_TYPE = "application/xml"


class ProxyService(BaseService):
    """Caching proxy service implementation."""

    def __init__(
        self,
        config: Optional[ProxyConfig] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__("proxy", config)
        self.response_cache = ResponseCache(max_entries=self.config.cache_max_entries or None)
        self.coalescer: RequestCoalescer[ResponseEnvelope] = RequestCoalescer()
        self.upstream_client = UpstreamClient(
            self.config.upstream_timeout_seconds,
            transport=transport,
        )
        self.orchestrator = ProxyOrchestrator(
            self.response_cache,
            self.coalescer,
            self.upstream_client,
            failure_ttl_seconds=self.config.failure_ttl_seconds,
            metrics=self.metrics,
        )

        self._setup_proxy_routes()

        # Expose service instance via app state for introspection/testing
        self.app.state.proxy_service = self

    def _upstream_url(self, path: str, request: Request) -> str:
        """Join ``path`` onto the upstream base, forwarding every query pair in order."""
        url = f"{self.config.upstream_base_url.rstrip('/')}{path}"
        query = urlencode(list(request.query_params.multi_items()))
        return f"{url}?{query}" if query else url

    @staticmethod
    def _relay(envelope: ResponseEnvelope) -> Response:
        """Send an envelope to the client verbatim."""
        return Response(
            content=envelope.body,
            status_code=envelope.status,
            headers={"content-type": envelope.content_type},
        )

    async def _proxy(self, request: Request, path: str, ttl_seconds: int, route: str) -> Response:
        upstream_url = self._upstream_url(path, request)
        envelope = await self.orchestrator.resolve(
            upstream_url,
            upstream_url,
            ttl_seconds,
            route=route,
        )
        return self._relay(envelope)

    def _setup_proxy_routes(self):
        """Set up proxied upstream routes."""

        @self.app.get("/api/locations")
        async def get_locations(request: Request):
            """Location search."""
            return await self._proxy(
                request,
                "/locations",
                self.config.locations_ttl_seconds,
                "locations",
            )

        @self.app.get("/api/stops/{stop_id}/departures")
        async def get_stop_departures(stop_id: str, request: Request):
            """Departures at a stop."""
            return await self._proxy(
                request,
                f"/stops/{quote(stop_id, safe='')}/departures",
                self.config.departures_ttl_seconds,
                "stop_departures",
            )

        @self.app.get("/api/stations/{station_id}/departures")
        async def get_station_departures(station_id: str, request: Request):
            """Departures at a station."""
            return await self._proxy(
                request,
                f"/stations/{quote(station_id, safe='')}/departures",
                self.config.departures_ttl_seconds,
                "station_departures",
            )

        @self.app.get("/api/rss")
        async def get_feed(
            url: Optional[str] = Query(default=None),
            output_format: Optional[str] = Query(default=None, alias="format"),
        ):
            """
            Fetch a caller-supplied RSS/Atom feed.

            The destination is validated before anything touches the network.
            ``format=json`` returns the normalized feed, anything else relays
            the raw document.
            """
            decision = is_allowed(url)
            if not decision.allowed:
                raise ValidationError(decision.reason, details={"url": url})

            shape = output_format or "xml"
            envelope = await self.orchestrator.resolve(
                f"{decision.url}|format={shape}",
                decision.url,
                self.config.feed_ttl_seconds,
                transform=normalize_feed_response if shape == "json" else None,
                default_content_type=FEED_DEFAULT_CONTENT_TYPE,
                route="feed",
            )
            return self._relay(envelope)

    async def _health_details(self) -> Dict[str, Any]:
        return {
            "cache": self.response_cache.stats(),
            "in_flight": len(self.coalescer),
        }


def create_app(config: Optional[ProxyConfig] = None, *, transport: Optional[httpx.AsyncBaseTransport] = None):
    """Create FastAPI application."""
    service = ProxyService(config, transport=transport)
    return service.app


def main():
    service = ProxyService()
    service.run()


if __name__ == "__main__":
    main()
