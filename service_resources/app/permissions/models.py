"""
Permission policy and result types.

A policy is one of three shapes:

- ``OpenPolicy``: every operation is allowed.
- ``AllowlistPolicy``: a fixed set of operations is allowed, wholesale.
  Allow-lists never narrow which records are visible.
- ``PredicatePolicy``: one predicate per operation, called with the
  serialized target and the request body. A ``read`` predicate may return a
  list of serialized records to narrow what the caller can see.

Resolution yields ``Granted``, ``Denied`` or ``FilteredSet``.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, List, Mapping, Optional, Union

from shared.logging import get_logger


logger = get_logger("resources.permissions.models")


class Operation(str, Enum):
    """Canonical operations."""
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "del"


METHOD_OPERATIONS: Dict[str, Operation] = {
    "POST": Operation.CREATE,
    "GET": Operation.READ,
    "PUT": Operation.UPDATE,
    "DELETE": Operation.DELETE,
}

OPERATION_METHODS: Dict[Operation, str] = {op: method for method, op in METHOD_OPERATIONS.items()}


def operation_for_method(method: str) -> Optional[Operation]:
    return METHOD_OPERATIONS.get(method.upper())


@dataclass(frozen=True)
class OpenPolicy:
    """Full access to all four operations."""


@dataclass(frozen=True)
class AllowlistPolicy:
    """Coarse on/off switch per operation."""
    operations: FrozenSet[Operation] = frozenset()


Predicate = Callable[[Any, Optional[Dict[str, Any]]], Any]


@dataclass(frozen=True)
class PredicatePolicy:
    """Per-operation predicates; a missing predicate denies that operation."""
    predicates: Mapping[Operation, Predicate] = field(default_factory=dict)


PermissionPolicy = Union[OpenPolicy, AllowlistPolicy, PredicatePolicy]

# A policy source is ``None`` (open), a policy or raw policy value, or a
# callable ``(context, target, body)`` returning one.
PolicySource = Any


@dataclass(frozen=True)
class Granted:
    """Unrestricted access for the operation."""


@dataclass(frozen=True)
class Denied:
    """No access."""
    reason: str = "Permission denied."


@dataclass(frozen=True)
class FilteredSet:
    """Access restricted to an explicit set of serialized records."""
    records: List[Dict[str, Any]] = field(default_factory=list)

    def contains(self, record: Any) -> bool:
        """Membership by identity attribute."""
        id_attribute = getattr(record, "id_attribute", "id")
        identity = getattr(record, "id", None)
        return any(
            isinstance(permitted, Mapping) and permitted.get(id_attribute) == identity
            for permitted in self.records
        )


PermissionResult = Union[Granted, Denied, FilteredSet]


def permits(result: PermissionResult, record: Any = None) -> bool:
    """Whether ``result`` lets the caller act on ``record`` (or the collection)."""
    if isinstance(result, Granted):
        return True
    if isinstance(result, FilteredSet):
        return True if record is None else result.contains(record)
    return False


def user_id_of(user: Any) -> Optional[str]:
    """Best-effort identity of a request user (mapping or object)."""
    if user is None:
        return None
    if isinstance(user, Mapping):
        value = user.get("id", user.get("user_id"))
    else:
        value = getattr(user, "id", getattr(user, "user_id", None))
    return None if value is None else str(value)


@dataclass(frozen=True)
class PermissionContext:
    """The requesting client a policy is evaluated for."""
    method: str
    user: Any = None
    url: str = ""

    @classmethod
    def from_request(cls, request: Any) -> "PermissionContext":
        return cls(
            method=request.method,
            user=getattr(request.state, "user", None),
            url=str(request.url),
        )

    @property
    def operation(self) -> Optional[Operation]:
        return operation_for_method(self.method)

    @property
    def user_id(self) -> Optional[str]:
        return user_id_of(self.user)

    def for_operation(self, operation: Operation) -> "PermissionContext":
        return replace(self, method=OPERATION_METHODS[operation])


def _as_operation(name: Any) -> Optional[Operation]:
    try:
        return Operation(name)
    except ValueError:
        logger.warning("Unknown operation in permission policy", operation=name)
        return None


def _as_predicate(value: Any) -> Predicate:
    if callable(value):
        return value
    return lambda target, body: value


def coerce_policy(value: Any) -> PermissionPolicy:
    """Turn a raw policy value into one of the three policy shapes.

    Lists/tuples/sets of operation names become allow-lists and mappings
    become predicate policies. Anything that is not an object (``False``,
    ``None``, numbers, strings) denies every operation.
    """
    if isinstance(value, (OpenPolicy, AllowlistPolicy, PredicatePolicy)):
        return value

    if isinstance(value, (list, tuple, set, frozenset)):
        operations = (_as_operation(name) for name in value)
        return AllowlistPolicy(frozenset(op for op in operations if op is not None))

    if isinstance(value, Mapping):
        predicates: Dict[Operation, Predicate] = {}
        for name, predicate in value.items():
            operation = _as_operation(name)
            if operation is not None:
                predicates[operation] = _as_predicate(predicate)
        return PredicatePolicy(predicates)

    return AllowlistPolicy(frozenset())


def allow(*operations: Union[str, Operation]) -> AllowlistPolicy:
    """Shorthand: ``allow("read", "update")``."""
    return coerce_policy(list(operations))


def predicates(**by_operation: Predicate) -> PredicatePolicy:
    """Shorthand: ``predicates(read=..., del_=...)``; a trailing underscore is dropped."""
    return coerce_policy({name.rstrip("_"): fn for name, fn in by_operation.items()})

