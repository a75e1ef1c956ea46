"""
Persistence boundary for collections.

The real store is an external collaborator; ``MemoryBackend`` is the
in-process implementation used by default and in tests.
"""

import asyncio
import copy
import itertools
from typing import Any, Dict, List, Protocol

from shared.logging import get_logger


class StoreError(Exception):
    """Persistence failure unrelated to validation."""


class StoreBackend(Protocol):
    """Asynchronous CRUD against records stored under a collection url."""

    async def read_all(self, url: str) -> List[Dict[str, Any]]: ...

    async def create(self, url: str, attributes: Dict[str, Any], id_attribute: str) -> Dict[str, Any]: ...

    async def update(self, url: str, record_id: Any, attributes: Dict[str, Any]) -> Dict[str, Any]: ...

    async def delete(self, url: str, record_id: Any) -> None: ...


class MemoryBackend:
    """Dictionary-backed store keyed by record url (``<collection url>/<id>``)."""

    def __init__(self):
        self.logger = get_logger("resources.store.memory")
        self.records: Dict[str, Dict[str, Any]] = {}
        self._ids = itertools.count(1)
        self._lock = asyncio.Lock()

    @staticmethod
    def record_key(url: str, record_id: Any) -> str:
        return f"{url.rstrip('/')}/{record_id}"

    async def read_all(self, url: str) -> List[Dict[str, Any]]:
        prefix = url.rstrip('/') + '/'
        return [
            copy.deepcopy(attributes)
            for key, attributes in self.records.items()
            if key.startswith(prefix) and '/' not in key[len(prefix):]
        ]

    async def create(self, url: str, attributes: Dict[str, Any], id_attribute: str) -> Dict[str, Any]:
        async with self._lock:
            stored = copy.deepcopy(attributes)
            if stored.get(id_attribute) is None:
                stored[id_attribute] = next(self._ids)
            key = self.record_key(url, stored[id_attribute])
            if key in self.records:
                raise StoreError(f"Record {stored[id_attribute]} already exists")
            self.records[key] = stored
            self.logger.debug("Record created", url=url, record_id=stored[id_attribute])
            return copy.deepcopy(stored)

    async def update(self, url: str, record_id: Any, attributes: Dict[str, Any]) -> Dict[str, Any]:
        async with self._lock:
            stored = copy.deepcopy(attributes)
            self.records[self.record_key(url, record_id)] = stored
            self.logger.debug("Record updated", url=url, record_id=record_id)
            return copy.deepcopy(stored)

    async def delete(self, url: str, record_id: Any) -> None:
        async with self._lock:
            self.records.pop(self.record_key(url, record_id), None)
            self.logger.debug("Record deleted", url=url, record_id=record_id)
