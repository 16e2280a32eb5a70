"""
Caching proxy service package for the Transit Proxy.

The proxy fronts a read-only transit data API and arbitrary RSS/Atom feeds,
shielding them from duplicate traffic:

- Caching: per-key response envelopes with absolute expiry
- Coalescing: at most one upstream fetch in flight per cache key
- Destination guard: caller-supplied feed URLs are validated before fetch

Structure:
- app.main: FastAPI app, routes, and service wiring.
- app.adapters: HTTP client for the upstream.
- app.caching: Response cache and request coalescer.
- app.domain: Destination guard and proxy orchestration.
- app.feeds: Feed normalization into JSON.
"""
