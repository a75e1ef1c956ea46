"""
Shared utilities for the collection resource service.

This package aggregates the service's common building blocks:

- config: Service configuration via pydantic-settings
- logging: Structured logging with request/user correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- base_service: FastAPI application shell with health and metrics routes

Do not import from service_resources into shared/.
"""
