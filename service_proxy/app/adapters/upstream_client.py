"""
Upstream HTTP client for the proxy.
"""

import asyncio
import json
import time
from dataclasses import dataclass
from typing import Optional

import httpx

from transit_shared.errors import UpstreamFailure, UpstreamTimeout, UpstreamTransportError
from transit_shared.logging import get_logger

from service_proxy.app.caching.response_cache import Clock, ResponseEnvelope


DEFAULT_TIMEOUT_SECONDS = 10.0
DEFAULT_CONTENT_TYPE = "application/json"
ERROR_CONTENT_TYPE = "application/json"


@dataclass(frozen=True)
class UpstreamResponse:
    """Raw upstream answer, any status code."""

    status: int
    content_type: str
    body: bytes

    @property
    def is_success(self) -> bool:
        return 200 <= self.status < 300

    def to_envelope(self, ttl_seconds: float, *, clock: Clock = time.time) -> ResponseEnvelope:
        return ResponseEnvelope.create(
            self.status,
            self.content_type,
            self.body,
            ttl_seconds,
            clock=clock,
        )


def envelope_for_failure(
    failure: UpstreamFailure,
    ttl_seconds: float,
    *,
    clock: Clock = time.time,
) -> ResponseEnvelope:
    """Map any upstream failure variant to its cacheable error envelope."""
    body = json.dumps({"error": failure.public_message, "code": failure.code}).encode("utf-8")
    return ResponseEnvelope.create(
        failure.status_code,
        ERROR_CONTENT_TYPE,
        body,
        ttl_seconds,
        clock=clock,
    )


class UpstreamClient:
    """
    Bounded-timeout GET against upstream URLs.

    Every upstream status is returned as an ``UpstreamResponse``; only
    transport-level problems raise, as ``UpstreamTimeout`` or
    ``UpstreamTransportError``.
    """

    def __init__(
        self,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout_seconds = timeout_seconds
        self._transport = transport
        self.logger = get_logger("proxy.upstream_client")

    async def fetch(self, url: str, *, default_content_type: str = DEFAULT_CONTENT_TYPE) -> UpstreamResponse:
        """GET ``url`` and read the whole body, bounded by ``timeout_seconds``."""
        try:
            response = await asyncio.wait_for(self._get(url), timeout=self.timeout_seconds)
        except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
            self.logger.warning("Upstream request timed out", url=url, timeout_seconds=self.timeout_seconds)
            raise UpstreamTimeout(
                f"no response within {self.timeout_seconds}s",
                details={"url": url},
            ) from exc
        except (httpx.HTTPError, httpx.InvalidURL, UnicodeError) as exc:
            # UnicodeError covers IDNA failures raised while building the request
            self.logger.warning("Upstream request failed", url=url, error=str(exc), error_type=type(exc).__name__)
            raise UpstreamTransportError(str(exc) or type(exc).__name__, details={"url": url}) from exc

        content_type = response.headers.get("content-type") or default_content_type
        self.logger.debug("Upstream response received", url=url, status_code=response.status_code)
        return UpstreamResponse(
            status=response.status_code,
            content_type=content_type,
            body=response.content,
        )

    async def _get(self, url: str) -> httpx.Response:
        async with httpx.AsyncClient(
            timeout=self.timeout_seconds,
            transport=self._transport,
            follow_redirects=True,
        ) as client:
            return await client.get(url)
