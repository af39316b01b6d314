"""
Shared utilities for the Fact Access Layer.

This package aggregates common building blocks consumed by the services:

- config: Service configuration via pydantic-settings
- logging: Structured logging with trace correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- retry: Retry decorator for outbound calls
- circuit_breaker: Resilient external call protection
- test_helpers: Factories and in-memory collaborators for tests

Do not import from service_* packages into shared/, except inside
test_helpers where fakes need the domain types.
"""
