"""
Shared utilities for the cargo billing rules service.

This package aggregates common building blocks consumed by the service:

- config: Service configuration via pydantic-settings
- logging: Structured logging with batch/request correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses

Any cross-cutting logic should live here to avoid import cycles. Do not
import from service_* packages into shared/.
"""
