"""
Permission resolution for collection resources.
"""

from typing import Any, Dict, Optional

from shared.logging import get_logger

from .models import (
    AllowlistPolicy, Denied, FilteredSet, Granted, OpenPolicy, Operation,
    PermissionContext, PermissionPolicy, PermissionResult, PolicySource,
    PredicatePolicy, coerce_policy,
)


class PermissionResolver:
    """Decides what a requesting client may do with a collection or record.

    Resolution order is fixed:

    1. no policy source: ``Granted``
    2. callable source: called as ``source(context, target, body)`` and its
       return value used as the policy
    3. allow-list: ``Granted`` if the request's operation is listed
    4. not an object: ``Denied``
    5. predicates: the operation's predicate is called with the serialized
       target and the body; a list result is a ``FilteredSet``, otherwise
       truthiness decides
    """

    def __init__(self):
        self.logger = get_logger("resources.permissions.resolver")

    def resolve(
        self,
        context: PermissionContext,
        source: PolicySource,
        target: Any,
        body: Optional[Dict[str, Any]] = None,
        resource: Optional[str] = None,
    ) -> PermissionResult:
        """Resolve ``source`` for ``context`` against a collection or record."""
        if source is None:
            return Granted()

        operation = context.operation
        if operation is None:
            return Denied(f"Method {context.method} maps to no operation")

        if callable(source) and not isinstance(source, (OpenPolicy, AllowlistPolicy, PredicatePolicy)):
            try:
                source = source(context, target, body)
            except Exception as e:
                self.logger.error(
                    "Permission policy raised",
                    resource=resource,
                    operation=operation.value,
                    user=context.user_id,
                    error=str(e),
                    exc_info=True
                )
                return Denied("Permission policy failed")

        result = self.evaluate(coerce_policy(source), operation, target, body, resource=resource)

        self.logger.debug(
            "Permission resolved",
            resource=resource,
            operation=operation.value,
            user=context.user_id,
            result=type(result).__name__
        )
        return result

    def evaluate(
        self,
        policy: PermissionPolicy,
        operation: Operation,
        target: Any,
        body: Optional[Dict[str, Any]] = None,
        resource: Optional[str] = None,
    ) -> PermissionResult:
        """Evaluate a concrete policy for one operation."""
        if isinstance(policy, OpenPolicy):
            return Granted()

        if isinstance(policy, AllowlistPolicy):
            if operation in policy.operations:
                return Granted()
            return Denied(f"{operation.value} is not permitted")

        predicate = policy.predicates.get(operation)
        if predicate is None:
            return Denied(f"No {operation.value} permission defined")

        try:
            outcome = predicate(self.serialize(target), body)
        except Exception as e:
            self.logger.error(
                "Permission predicate raised",
                resource=resource,
                operation=operation.value,
                error=str(e),
                exc_info=True
            )
            return Denied("Permission predicate failed")

        if isinstance(outcome, (list, tuple)):
            return FilteredSet(list(outcome))
        if outcome:
            return Granted()
        return Denied(f"{operation.value} is not permitted")

    @staticmethod
    def serialize(target: Any) -> Any:
        to_json = getattr(target, "to_json", None)
        return to_json() if callable(to_json) else target
