"""
Shared utilities for the query cache.

This package aggregates cross-cutting building blocks used by the core:

- config: Process-wide settings via pydantic-settings
- logging: Structured logging with trace and query correlation
- metrics: Prometheus metrics per cache
- tracing: OpenTelemetry spans around fetch attempts
- errors: Canonical error types and descriptions
- retry: Retry decisions and backoff delays

Do not import from the core modules into shared/.
"""
