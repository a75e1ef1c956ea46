"""
Permission policies and their resolution.
"""

from .models import (
    AllowlistPolicy,
    Denied,
    FilteredSet,
    Granted,
    OpenPolicy,
    Operation,
    PermissionContext,
    PermissionResult,
    PredicatePolicy,
    allow,
    coerce_policy,
    operation_for_method,
    permits,
    predicates,
    user_id_of,
)
from .resolver import PermissionResolver

__all__ = [
    "AllowlistPolicy",
    "Denied",
    "FilteredSet",
    "Granted",
    "OpenPolicy",
    "Operation",
    "PermissionContext",
    "PermissionResolver",
    "PermissionResult",
    "PredicatePolicy",
    "allow",
    "coerce_policy",
    "operation_for_method",
    "permits",
    "predicates",
    "user_id_of",
]
