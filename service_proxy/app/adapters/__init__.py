"""
Adapters package for the Proxy Service.

Wraps the outbound HTTP call to upstream. The adapter owns the timeout bound
and turns transport problems into the shared upstream failure types.
"""

from .upstream_client import UpstreamClient, UpstreamResponse, envelope_for_failure

__all__ = [
    "UpstreamClient",
    "UpstreamResponse",
    "envelope_for_failure",
]
