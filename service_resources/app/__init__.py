"""
Collection Resource Service package.

Exposes data collections as REST resources and live Server-Sent Events
streams under a per-operation, per-record permission policy. Key modules:

- app.main: FastAPI service and resource registration
- app.registry: path/name registry of resources
- app.permissions: policy shapes and the permission resolver
- app.handlers: CRUD handlers and query projections
- app.sse: change broadcaster and subscription lifecycle
- app.store: collection/record abstraction over a store backend
"""
