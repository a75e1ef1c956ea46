"""
Resource name registry.

Maps normalized collection paths to resource names and resource names to
their bindings, so any request path (including ones carrying an identifier
or ``/subscribe`` suffix) resolves back to the owning resource.
"""

import re
from typing import Any, Dict, Iterator, List, Optional, Pattern, Union
from urllib.parse import urlsplit

from shared.errors import ConfigurationError
from shared.logging import get_logger


logger = get_logger("resources.registry")


def normalize_path(url: str) -> str:
    """Pathname only, leading slash, no trailing slashes."""
    path = urlsplit(url).path
    return "/" + path.strip("/")


def derive_name(path: str, name_regex: Optional[Union[str, Pattern]] = None) -> str:
    """Resource name for a collection path.

    With ``name_regex`` the first capture group of a search over the path is
    the name; otherwise the path without its leading slash.
    """
    if name_regex is None:
        return path[1:] if path.startswith("/") else path

    match = re.search(name_regex, path)
    if match is None or not match.groups():
        details = {
            "url": path,
            "regex": getattr(name_regex, "pattern", name_regex),
            "expecting": "a match with at least one capture group",
        }
        logger.error("Cannot match resource name", **details)
        raise ConfigurationError(f"Cannot derive a resource name from {path}", details)
    return match.group(1)


class CollectionRegistry:
    """Registry of resources keyed by path and by name.

    Registering a path or name twice raises ``ConfigurationError``.
    """

    def __init__(self):
        self._names: Dict[str, str] = {}       # path -> name
        self._bindings: Dict[str, Any] = {}    # name -> binding

    def __len__(self) -> int:
        return len(self._bindings)

    def __contains__(self, name: str) -> bool:
        return name in self._bindings

    def __iter__(self) -> Iterator[Any]:
        return iter(list(self._bindings.values()))

    def register(self, path: str, name: str, binding: Any) -> None:
        path = normalize_path(path)
        if path in self._names:
            raise ConfigurationError(
                f"A resource is already registered at {path}",
                {"url": path, "name": self._names[path]}
            )
        if name in self._bindings:
            raise ConfigurationError(
                f"A resource named {name} is already registered",
                {"url": path, "name": name}
            )

        self._names[path] = name
        self._bindings[name] = binding
        logger.info("Resource registered", url=path, resource=name)

    def resolve_name(self, url: str) -> Optional[str]:
        """Longest registered path prefix of ``url``, as a resource name."""
        path = normalize_path(url)
        if path in self._names:
            return self._names[path]

        parts = path.split("/")
        while len(parts) > 1:
            parts.pop()
            candidate = "/".join(parts) or "/"
            if candidate in self._names:
                return self._names[candidate]
        return None

    def get(self, name: str) -> Optional[Any]:
        return self._bindings.get(name)

    def lookup(self, url: str) -> Optional[Any]:
        name = self.resolve_name(url)
        return None if name is None else self._bindings.get(name)

    def names(self) -> List[str]:
        return list(self._bindings)
