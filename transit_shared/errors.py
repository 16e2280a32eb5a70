"""
Shared error handling for the Transit Proxy.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Standard error response format."""

    error: str
    code: str
    details: Dict[str, Any] = Field(default_factory=dict)


class ProxyLayerException(Exception):
    """Base exception for the proxy service."""

    status_code = 500

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(error=self.message, code=self.code, details=self.details)


class ValidationError(ProxyLayerException):
    """Validation-related errors."""

    status_code = 400

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class ExternalServiceError(ProxyLayerException):
    """External service errors."""

    status_code = 502

    def __init__(
        self,
        service: str,
        message: str = "External service error",
        details: Optional[Dict[str, Any]] = None,
        code: str = "EXTERNAL_SERVICE_ERROR",
    ):
        self.service = service
        super().__init__(code, message, details)


class UpstreamFailure(ExternalServiceError):
    """
    Closed family of upstream fetch failures.

    Each variant fixes the status code and the client-facing message used
    when the failure is turned into a cached response envelope.
    """

    code = "UPSTREAM_ERROR"
    public_message = "Upstream error"

    def __init__(self, reason: str, details: Optional[Dict[str, Any]] = None):
        self.reason = reason
        super().__init__("upstream", self.public_message, details, code=self.code)

    def __str__(self) -> str:
        return f"{self.public_message}: {self.reason}"


class UpstreamTimeout(UpstreamFailure):
    """No response from upstream within the fetch bound."""

    status_code = 504
    code = "UPSTREAM_TIMEOUT"
    public_message = "Upstream timeout"


class UpstreamTransportError(UpstreamFailure):
    """Connection-level failure (refused, DNS, TLS, protocol)."""

    status_code = 502
    code = "UPSTREAM_ERROR"
    public_message = "Upstream error"


class FeedParseError(UpstreamFailure):
    """Upstream body could not be parsed as a feed document."""

    status_code = 502
    code = "FEED_PARSE_ERROR"
    public_message = "Upstream feed could not be parsed"
