"""
Domain helpers for the Proxy Service.

- destination_guard: anti-SSRF validation of caller-supplied URLs
- proxy: cache/coalesce/fetch orchestration used by every route
"""

from .destination_guard import GuardDecision, is_allowed
from .proxy import ProxyOrchestrator

__all__ = ["GuardDecision", "is_allowed", "ProxyOrchestrator"]
