"""
Shared utilities for the Transit Proxy.

This package aggregates the building blocks consumed by the proxy service:

- config: Service configuration via pydantic-settings
- logging: Structured logging with request correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- base_service: FastAPI application scaffold

Do not import from service_* packages into transit_shared/.
"""
