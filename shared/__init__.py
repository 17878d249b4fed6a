"""
Shared utilities for the PNCP Access proxy.

This package aggregates common building blocks consumed by the service:

- config: Service configuration via pydantic-settings
- logging: Structured logging with request correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- retry: Bounded retry with backoff
- base_service: FastAPI service shell with health and metrics routes

Do not import from service packages into shared/.
"""
