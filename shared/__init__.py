"""
Shared utilities for the Splitledger Console.

This package aggregates common building blocks consumed by all services:

- config: Service configuration via pydantic-settings
- logging: Structured logging with request correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- retry: Retry decorators for backend calls
- circuit_breaker: Resilient external call protection
- test_helpers: Fakes and payload factories for tests

Any cross-service logic should live here to avoid import cycles across
service packages. Do not import from service_* packages into shared/.
"""
