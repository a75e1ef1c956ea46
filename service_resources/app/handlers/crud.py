"""
CRUD request handlers for collection resources.
"""

import json
from typing import Any, Dict, Optional, TYPE_CHECKING

from fastapi import Request, Response
from fastapi.responses import JSONResponse

from shared.errors import (
    NotFound, PermissionDenied, PersistenceFailure, ValidationFailed,
)
from shared.logging import get_logger, set_resource_context, set_user_context
from shared.metrics import MetricsCollector

from ..permissions import (
    Denied, FilteredSet, PermissionContext, PermissionResolver, PermissionResult, permits,
)
from ..registry import CollectionRegistry
from ..store import Model, StoreError
from .projection import narrow, parse_fields, where_equals

if TYPE_CHECKING:
    from ..resource import Resource


def reserved_attributes(record: Model) -> Dict[str, Any]:
    """Identity plus ``_``-prefixed attributes; all a write echoes back."""
    return {
        key: value for key, value in record.to_json().items()
        if key.startswith("_") or key == record.id_attribute
    }


class ResourceHandler:
    """Implements read/create/update/delete for every registered resource.

    The owning resource is found from the request path through the
    registry. Permission failures raise ``PermissionDenied``; the service's
    exception handlers turn every raised error into its JSON response.
    """

    def __init__(
        self,
        registry: CollectionRegistry,
        resolver: PermissionResolver,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.registry = registry
        self.resolver = resolver
        self.metrics = metrics
        self.logger = get_logger("resources.handlers.crud")

    async def read(self, request: Request, record_id: Optional[str] = None) -> Response:
        resource = self._resource_for(request)
        context = self._context(request)
        collection = resource.collection
        query = request.query_params
        picks = parse_fields(query.get("pick"))
        omits = parse_fields(query.get("omit"))

        permitted = self._authorize(context, resource, collection, message=f"No permission for {resource.name}")

        if record_id is not None:
            record = collection.get(record_id)
            if record is None:
                self.logger.warning("read: record does not exist", resource=resource.name, record=record_id)
                raise NotFound(f"Model {record_id} does not exist.")

            # A narrowed read permission must include the requested record
            if isinstance(permitted, FilteredSet) and not permitted.contains(record):
                self._denied(context, resource, f"No permission for {record.id}", record=record.id)

            body = narrow(resource.pick(record.to_json()), picks, omits)
            self.logger.debug("read: record", resource=resource.name, record=record.id)
            return JSONResponse(body)

        pool = collection.to_json() if not isinstance(permitted, FilteredSet) else list(permitted.records)
        records = resource.filter(pool)
        records = where_equals(records, query.get("whereKey"), query.get("whereValue"))
        if picks or omits:
            records = [narrow(record, picks, omits) for record in records]

        self.logger.debug("read: collection", resource=resource.name, count=len(records))
        return JSONResponse(records)

    async def create(self, request: Request) -> Response:
        resource = self._resource_for(request)
        context = self._context(request)
        data = await self._read_body(request)

        self._authorize(context, resource, resource.collection, body=data)

        try:
            record = await resource.collection.create(data)
        except ValidationFailed as e:
            self.logger.warning("create: validation failed", resource=resource.name, message=e.message)
            raise
        except StoreError as e:
            self.logger.error("create: store error", resource=resource.name, error=str(e), exc_info=True)
            raise PersistenceFailure("create error", details={"resource": resource.name})

        self.logger.info("create: record created", resource=resource.name, record=record.id)
        return JSONResponse(reserved_attributes(record), status_code=206)

    async def update(self, request: Request, record_id: str) -> Response:
        resource = self._resource_for(request)
        context = self._context(request)
        data = await self._read_body(request)
        record = resource.collection.get(record_id)

        # Policies may need the record, so permission is checked before existence
        self._authorize(context, resource, record or resource.collection, body=data, record=record)

        if record is None:
            self.logger.error("update: record does not exist", resource=resource.name, record=record_id)
            raise NotFound(f"Model {record_id} does not exist.")

        try:
            await record.save(data)
        except ValidationFailed as e:
            self.logger.warning("update: validation failed", resource=resource.name, record=record.id, message=e.message)
            raise
        except StoreError as e:
            self.logger.error("update: store error", resource=resource.name, record=record_id, error=str(e), exc_info=True)
            raise PersistenceFailure("update error", details={"resource": resource.name, "record": record_id})

        self.logger.info("update: record saved", resource=resource.name, record=record.id)
        return JSONResponse(reserved_attributes(record), status_code=206)

    async def delete(self, request: Request, record_id: str) -> Response:
        resource = self._resource_for(request)
        context = self._context(request)
        record = resource.collection.get(record_id)

        self._authorize(context, resource, record or resource.collection, record=record)

        if record is None:
            self.logger.warning("delete: record does not exist", resource=resource.name, record=record_id)
            raise NotFound(f"Model {record_id} does not exist.")

        try:
            await record.destroy()
        except StoreError as e:
            self.logger.error("delete: store error", resource=resource.name, record=record_id, error=str(e), exc_info=True)
            raise PersistenceFailure("delete error", details={"resource": resource.name, "record": record_id})

        self.logger.info("delete: record destroyed", resource=resource.name, record=record_id)
        return Response(status_code=204)

    def _resource_for(self, request: Request) -> "Resource":
        resource = self.registry.lookup(request.url.path)
        if resource is None:
            raise NotFound(f"No resource at {request.url.path}")
        set_resource_context(resource.name)
        return resource

    def _context(self, request: Request) -> PermissionContext:
        context = PermissionContext.from_request(request)
        set_user_context(context.user_id)
        return context

    def _authorize(
        self,
        context: PermissionContext,
        resource: "Resource",
        target: Any,
        body: Optional[Dict[str, Any]] = None,
        record: Optional[Model] = None,
        message: str = "Permission denied.",
    ) -> PermissionResult:
        result = self.resolver.resolve(context, resource.permissions, target, body, resource=resource.name)
        if not permits(result, record):
            reason = result.reason if isinstance(result, Denied) else "record not in permitted set"
            self._denied(context, resource, message, reason=reason)
        return result

    def _denied(self, context: PermissionContext, resource: "Resource", message: str, **details: Any) -> None:
        operation = context.operation.value if context.operation else context.method
        self.logger.warning(
            "permission denied",
            resource=resource.name,
            method=context.method,
            url=context.url,
            user=context.user_id,
            **details
        )
        if self.metrics is not None:
            self.metrics.record_permission_denial(resource.name, operation)
        raise PermissionDenied(message)

    @staticmethod
    async def _read_body(request: Request) -> Dict[str, Any]:
        raw = await request.body()
        if not raw.strip():
            return {}
        try:
            data = json.loads(raw)
        except ValueError:
            raise ValidationFailed("Request body is not valid JSON")
        if not isinstance(data, dict):
            raise ValidationFailed("Request body must be a JSON object")
        return data
