"""
Collection resource service.
"""

from typing import Any, Callable, Dict, List, Optional, Pattern, Union

from shared.base_service import BaseService
from shared.errors import ConfigurationError

from .handlers import ResourceHandler
from .permissions import PermissionResolver
from .registry import CollectionRegistry
from .resource import Resource, ResourceOptions
from .sse import ChangeBroadcaster
from .store import Collection, MemoryBackend, StoreBackend


class ResourceService(BaseService):
    """Serves registered collections as REST resources and event streams."""

    def __init__(self, backend: Optional[StoreBackend] = None, **config_overrides):
        super().__init__("resources", 8000, **config_overrides)

        self.backend = backend if backend is not None else MemoryBackend()
        self.registry = CollectionRegistry()
        self.resolver = PermissionResolver()
        self.handler = ResourceHandler(self.registry, self.resolver, metrics=self.metrics)
        self.broadcaster = ChangeBroadcaster(
            self.resolver,
            metrics=self.metrics,
            heartbeat_seconds=self.config.sse_heartbeat_seconds,
            max_connections=self.config.max_sse_connections,
            queue_size=self.config.sse_queue_size,
        )
        self.resources: List[Resource] = []

        self._setup_resource_routes()
        self.app.state.resource_service = self

    def _setup_resource_routes(self):
        """Set up service-level routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": self.service_name,
                "message": "Collection resources with live change streams",
                "version": "1.0.0",
                "capabilities": ["rest", "sse"],
                "resources": [resource.describe() for resource in self.resources]
            }

        @self.app.get("/stats")
        async def get_stats():
            """Get event-stream statistics."""
            return {
                "resources": len(self.registry),
                "sse": self.broadcaster.get_connection_stats()
            }

    def register(
        self,
        collection: Union[Collection, str],
        permissions: Any = None,
        pick: Optional[Callable] = None,
        filter: Optional[Callable] = None,
        name_regex: Optional[Union[str, Pattern]] = None,
        assign_routes: bool = True,
    ) -> Resource:
        """Expose ``collection`` (or a new collection at the url ``collection``).

        Raises ``ConfigurationError`` when the name cannot be derived or the
        path/name is already registered.
        """
        if isinstance(collection, str):
            collection = Collection(collection, backend=self.backend)
        elif not isinstance(collection, Collection):
            raise ConfigurationError("A resource needs a collection", {"collection": repr(collection)})

        options = ResourceOptions(
            permissions=permissions,
            pick=pick,
            filter=filter,
            name_regex=name_regex,
            assign_routes=assign_routes,
        )
        resource = Resource(collection, self.registry, self.handler, self.broadcaster, options)
        if options.assign_routes:
            resource.assign_routes(self.app)

        self.resources.append(resource)
        return resource

    async def _check_dependencies(self) -> Dict[str, Any]:
        return {"store": type(self.backend).__name__, "resources": len(self.resources)}

    async def start(self):
        """Load every registered collection from the store."""
        for resource in self.resources:
            await resource.load()
        self.logger.info("Resource service started", resources=self.registry.names())

    async def stop(self):
        await self.broadcaster.close_all()
        self.logger.info("Resource service stopped")


def create_app(**config_overrides):
    """Create resource service application."""
    service = ResourceService(**config_overrides)
    return service.app


if __name__ == "__main__":
    service = ResourceService()
    service.run()
