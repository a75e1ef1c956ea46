"""
Shared fixtures for resource service tests.
"""

import pytest
from fastapi import Request
from fastapi.testclient import TestClient

from service_resources.app.main import ResourceService
from service_resources.app.permissions import PermissionContext
from service_resources.app.store import Collection, MemoryBackend


@pytest.fixture
def backend():
    """Create an in-memory store backend."""
    return MemoryBackend()


@pytest.fixture
def service(backend):
    """Create ResourceService whose requests carry the ``X-User-Id`` user."""
    service = ResourceService(backend=backend, sse_heartbeat_seconds=0.05)

    @service.app.middleware("http")
    async def attach_user(request: Request, call_next):
        user_id = request.headers.get("X-User-Id")
        request.state.user = {"id": user_id} if user_id else None
        return await call_next(request)

    return service


@pytest.fixture
def client(service):
    """Create test client."""
    return TestClient(service.app)


@pytest.fixture
def numbered_collection(backend):
    """Ten records with ids 101..110."""
    return Collection(
        "/numbered",
        [{"id": 100 + i, "key": f"value {i}"} for i in range(1, 11)],
        backend=backend
    )


@pytest.fixture
def reader_context():
    """Context of a client reading as user-1."""
    return PermissionContext(method="GET", user={"id": "user-1"}, url="/numbered")


@pytest.fixture
def odd_ids():
    """Read predicate narrowing to records with odd ids."""
    def predicate(records, body=None):
        return [record for record in records if record["id"] % 2 == 1]
    return predicate
