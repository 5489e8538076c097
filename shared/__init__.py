"""
Shared utilities for the document store access layer.

This package aggregates the ambient building blocks used by the connector:

- config: Connector configuration via pydantic-settings
- logging: Structured logging with trace correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- test_helpers: Transport, store and channel doubles for tests
"""
