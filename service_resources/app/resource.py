"""
Binding of one collection to its routes and permission policy.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Pattern, Union

from fastapi import FastAPI, Request
from fastapi.responses import StreamingResponse

from shared.errors import NotFound, PersistenceFailure
from shared.logging import get_logger

from .handlers import ResourceHandler
from .permissions import PermissionContext
from .registry import CollectionRegistry, derive_name, normalize_path
from .sse import ChangeBroadcaster
from .store import Collection, StoreError


SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def _unchanged(value: Any) -> Any:
    return value


@dataclass
class ResourceOptions:
    """Per-resource configuration.

    ``permissions`` is ``None`` (open), an allow-list of operation names, a
    mapping of operation name to predicate, a policy object, or a callable
    ``(context, target, body)`` returning any of those. ``pick`` projects a
    single serialized record; ``filter`` transforms the serialized list a
    collection read returns.
    """
    permissions: Any = None
    pick: Optional[Callable[[Dict[str, Any]], Dict[str, Any]]] = None
    filter: Optional[Callable[[List[Dict[str, Any]]], List[Dict[str, Any]]]] = None
    name_regex: Optional[Union[str, Pattern]] = None
    assign_routes: bool = True


class Resource:
    """A collection exposed over HTTP and as an event stream."""

    def __init__(
        self,
        collection: Collection,
        registry: CollectionRegistry,
        handler: ResourceHandler,
        broadcaster: ChangeBroadcaster,
        options: Optional[ResourceOptions] = None,
    ):
        self.collection = collection
        self.handler = handler
        self.broadcaster = broadcaster
        self.options = options or ResourceOptions()
        self.logger = get_logger("resources.resource")

        self.permissions = self.options.permissions
        self.pick = self.options.pick or _unchanged
        self.filter = self.options.filter or _unchanged

        self.path = normalize_path(collection.url)
        self.name = derive_name(self.path, self.options.name_regex)
        registry.register(self.path, self.name, self)

    def __repr__(self) -> str:
        return f"<Resource {self.name} at {self.path}>"

    def assign_routes(self, app: FastAPI):
        """Install the resource's routes; event-stream routes go first so the
        record routes cannot shadow them.

        Record ids use the ``path`` convertor: Starlette decodes the path before
        routing, so an id such as ``a%2Fb`` arrives as ``a/b``.
        """
        base = "" if self.path == "/" else self.path
        record = base + "/{record_id:path}"

        app.add_api_route(base + "/subscribe", self.subscribe_collection, methods=["GET"],
                          name=f"{self.name}:subscribe")
        app.add_api_route(record + "/subscribe", self.subscribe_record, methods=["GET"],
                          name=f"{self.name}:subscribe_record")

        app.add_api_route(base or "/", self.read_collection, methods=["GET"], name=f"{self.name}:list")
        app.add_api_route(record, self.read_record, methods=["GET"], name=f"{self.name}:read")
        app.add_api_route(base or "/", self.create, methods=["POST"], name=f"{self.name}:create")
        app.add_api_route(record, self.update, methods=["PUT"], name=f"{self.name}:update")
        app.add_api_route(record, self.delete, methods=["DELETE"], name=f"{self.name}:delete")

        self.logger.info("Routes assigned", resource=self.name, url=self.path)

    async def load(self) -> Collection:
        """Fetch the collection from the store unless it already holds records."""
        if len(self.collection):
            self.logger.info(
                "found preexisting records, not fetching from store",
                resource=self.name,
                count=len(self.collection),
                url=self.path
            )
            return self.collection

        try:
            await self.collection.fetch()
        except StoreError as e:
            self.logger.error("fetch failed", resource=self.name, error=str(e), exc_info=True)
            raise PersistenceFailure("fetch error", details={"resource": self.name})

        self.logger.info("found records", resource=self.name, count=len(self.collection), url=self.path)
        return self.collection

    def describe(self) -> Dict[str, Any]:
        if self.permissions is None:
            policy = "open"
        elif callable(self.permissions):
            policy = "dynamic"
        else:
            policy = type(self.permissions).__name__
        return {
            "name": self.name,
            "url": self.path,
            "records": len(self.collection),
            "policy": policy,
        }

    async def read_collection(self, request: Request):
        return await self.handler.read(request)

    async def read_record(self, request: Request, record_id: str):
        # "/things/" reads the collection
        if not record_id:
            return await self.handler.read(request)
        return await self.handler.read(request, record_id)

    async def create(self, request: Request):
        return await self.handler.create(request)

    async def update(self, request: Request, record_id: str):
        return await self.handler.update(request, record_id)

    async def delete(self, request: Request, record_id: str):
        return await self.handler.delete(request, record_id)

    async def subscribe_collection(self, request: Request):
        subscription = await self.broadcaster.open(PermissionContext.from_request(request), self)
        return self._event_stream(subscription, request)

    async def subscribe_record(self, request: Request, record_id: str):
        record = self.collection.get(record_id)
        if record is None:
            self.logger.warning("sse: record does not exist", resource=self.name, record=record_id)
            raise NotFound(f"Model {record_id} does not exist.")

        subscription = await self.broadcaster.open(PermissionContext.from_request(request), self, record)
        return self._event_stream(subscription, request)

    def _event_stream(self, subscription, request: Request) -> StreamingResponse:
        return StreamingResponse(
            self.broadcaster.stream(subscription, request),
            media_type="text/event-stream",
            headers=SSE_HEADERS
        )
