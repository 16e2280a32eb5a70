"""
Proxy caching package.

Process-lifetime response cache and single-flight coalescing. Nothing here is
persisted; both stores reset on restart.
"""

from .coalescer import RequestCoalescer
from .response_cache import ResponseCache, ResponseEnvelope

__all__ = ["RequestCoalescer", "ResponseCache", "ResponseEnvelope"]
