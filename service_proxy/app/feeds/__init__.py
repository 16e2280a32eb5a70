"""Feed normalization for the Proxy Service."""

from .normalizer import normalize_feed_response, parse_feed

__all__ = ["normalize_feed_response", "parse_feed"]
