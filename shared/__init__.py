"""
Shared utilities for the Roster Access Layer.

This package aggregates common building blocks consumed by all services:

- config: Service configuration via pydantic-settings
- logging: Structured logging with request and session correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- retry: Retry decorators and helpers
- circuit_breaker: Resilient external call protection
- base_service: FastAPI service skeleton (health, metrics, error mapping)

Any cross-service logic should live here to avoid import cycles across
service packages. Do not import from service packages into shared/.
"""
