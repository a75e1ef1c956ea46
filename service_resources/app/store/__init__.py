"""
Store collaborator: collections, records and their mutation events.
"""

from .backend import MemoryBackend, StoreBackend, StoreError
from .collection import Collection, Model
from .events import EventEmitter

__all__ = [
    "Collection",
    "EventEmitter",
    "MemoryBackend",
    "Model",
    "StoreBackend",
    "StoreError",
]
