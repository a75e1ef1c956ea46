"""
Collection and record (model) abstractions over a store backend.

Mutations made through ``create``/``save``/``destroy`` are persisted before
they are applied locally, so observers never see an event for a write the
store has not confirmed. ``add``/``remove``/``set`` apply immediately; they
model changes that originate server-side.
"""

import copy
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Union

from shared.errors import ValidationFailed
from shared.logging import get_logger

from .backend import MemoryBackend, StoreBackend
from .events import EventEmitter


Validator = Callable[[Dict[str, Any]], Optional[str]]

logger = get_logger("resources.store.collection")


class Model(EventEmitter):
    """A record: attribute mapping with a designated identity attribute.

    Emits ``change`` (after attributes changed) and ``destroy`` (after the
    store confirmed deletion).
    """

    def __init__(
        self,
        attributes: Optional[Dict[str, Any]] = None,
        collection: Optional["Collection"] = None,
        id_attribute: str = "id",
    ):
        super().__init__()
        self.collection = collection
        self.id_attribute = collection.id_attribute if collection is not None else id_attribute
        self.attributes: Dict[str, Any] = copy.deepcopy(dict(attributes or {}))

    def __repr__(self) -> str:
        return f"<Model {self.id_attribute}={self.id!r}>"

    @property
    def id(self) -> Any:
        return self.attributes.get(self.id_attribute)

    def is_new(self) -> bool:
        return self.id is None

    def get(self, key: str, default: Any = None) -> Any:
        return self.attributes.get(key, default)

    def set(self, attributes: Dict[str, Any]) -> bool:
        """Apply attributes; emit ``change`` when anything actually changed."""
        changed = {
            key: value for key, value in attributes.items()
            if key not in self.attributes or self.attributes[key] != value
        }
        if not changed:
            return False
        self.attributes.update(copy.deepcopy(changed))
        self.emit("change", self)
        return True

    def to_json(self) -> Dict[str, Any]:
        return copy.deepcopy(self.attributes)

    def validate(self, attributes: Dict[str, Any]) -> Optional[str]:
        if self.collection is not None:
            return self.collection.validate(attributes)
        return None

    async def save(self, attributes: Optional[Dict[str, Any]] = None) -> "Model":
        """Validate, persist, and only then apply the new attributes."""
        if self.collection is None:
            raise RuntimeError("Model must belong to a collection to be saved")

        pending = {**self.attributes, **(attributes or {})}
        error = self.validate(pending)
        if error:
            raise ValidationFailed(error, details={"record": self.id})

        backend = self.collection.backend
        if self.is_new():
            persisted = await backend.create(self.collection.url, pending, self.id_attribute)
        else:
            persisted = await backend.update(self.collection.url, self.id, pending)

        self.set(persisted)
        return self

    async def destroy(self) -> "Model":
        """Delete from the store, then announce ``destroy``."""
        if self.collection is not None and not self.is_new():
            await self.collection.backend.delete(self.collection.url, self.id)
        self.emit("destroy", self)
        return self


class Collection(EventEmitter):
    """Ordered set of records addressed by one url.

    Emits ``add`` and ``remove`` for membership changes and re-emits each
    member's ``change`` and ``destroy``.
    """

    def __init__(
        self,
        url: str,
        models: Optional[Iterable[Union[Dict[str, Any], Model]]] = None,
        backend: Optional[StoreBackend] = None,
        id_attribute: str = "id",
        validator: Optional[Validator] = None,
    ):
        super().__init__()
        self.url = "/" + url.strip("/")
        self.backend = backend if backend is not None else MemoryBackend()
        self.id_attribute = id_attribute
        self.validator = validator
        self.models: List[Model] = []
        self._member_handles: Dict[int, List[Callable[[], None]]] = {}

        for item in models or ():
            self.add(item)

    def __repr__(self) -> str:
        return f"<Collection {self.url} ({len(self.models)} records)>"

    def __len__(self) -> int:
        return len(self.models)

    def __iter__(self) -> Iterator[Model]:
        return iter(list(self.models))

    def validate(self, attributes: Dict[str, Any]) -> Optional[str]:
        if self.validator is None:
            return None
        return self.validator(attributes)

    def get(self, record_id: Any) -> Optional[Model]:
        """Find a member by identity; ids compare as strings (``"7"`` finds ``7``)."""
        if record_id is None:
            return None
        if isinstance(record_id, Model):
            record_id = record_id.id
        wanted = str(record_id)
        for model in self.models:
            if model.id is not None and str(model.id) == wanted:
                return model
        return None

    def add(self, item: Union[Dict[str, Any], Model]) -> Model:
        """Add a record; an already-present identity returns the existing member."""
        if isinstance(item, Model):
            model = item
            model.collection = self
            model.id_attribute = self.id_attribute
        else:
            model = Model(item, collection=self)

        existing = self.get(model.id)
        if existing is not None:
            return existing

        self.models.append(model)
        self._member_handles[id(model)] = [
            model.on("change", self._on_member_change),
            model.on("destroy", self._on_member_destroy),
        ]
        self.emit("add", model)
        return model

    def remove(self, item: Any) -> Optional[Model]:
        model = item if isinstance(item, Model) else self.get(item)
        if model is None or model not in self.models:
            return None

        self.models.remove(model)
        for unsubscribe in self._member_handles.pop(id(model), ()):
            unsubscribe()
        self.emit("remove", model)
        return model

    async def create(self, attributes: Dict[str, Any]) -> Model:
        """Validate and persist a new record, adding it once the store confirms."""
        error = self.validate(attributes)
        if error:
            raise ValidationFailed(error)

        persisted = await self.backend.create(self.url, attributes, self.id_attribute)
        return self.add(persisted)

    async def fetch(self) -> "Collection":
        for attributes in await self.backend.read_all(self.url):
            self.add(attributes)
        logger.debug("Collection fetched", url=self.url, count=len(self.models))
        return self

    def to_json(self) -> List[Dict[str, Any]]:
        return [model.to_json() for model in self.models]

    def _on_member_change(self, model: Model) -> None:
        self.emit("change", model)

    def _on_member_destroy(self, model: Model) -> None:
        self.remove(model)
        self.emit("destroy", model)
