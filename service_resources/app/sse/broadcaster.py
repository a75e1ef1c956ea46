"""
Server-Sent Events broadcaster for collection and record changes.
"""

import asyncio
import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, AsyncGenerator, Callable, Dict, List, Optional, Tuple, Union, TYPE_CHECKING

from shared.errors import ConnectionLimitExceeded, PermissionDenied
from shared.logging import get_logger
from shared.metrics import MetricsCollector

from ..permissions import (
    Denied, FilteredSet, Granted, Operation, PermissionContext, PermissionResolver,
)
from ..store import Collection, Model

if TYPE_CHECKING:
    from ..resource import Resource


COLLECTION_EVENTS: Tuple[str, ...] = ("add", "change", "remove")
RECORD_EVENTS: Tuple[str, ...] = ("change", "destroy")
DEPARTURE_EVENTS = frozenset(("remove", "destroy"))

KEEPALIVE_FRAME = ": keepAlive\n\n"


def format_event(event: str, data: Any) -> str:
    return f"event: {event}\ndata: {json.dumps(data)}\n\n"


class SubscriptionState(str, Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


@dataclass
class Subscription:
    """One client's live binding to a collection or a record."""
    subscription_id: str
    resource: str
    context: PermissionContext
    target: Union[Collection, Model]
    events: Tuple[str, ...]
    queue: asyncio.Queue
    state: SubscriptionState = SubscriptionState.CONNECTING
    created_at: datetime = field(default_factory=datetime.now)
    last_activity: datetime = field(default_factory=datetime.now)
    sent_count: int = 0
    cleanup: List[Callable[[], None]] = field(default_factory=list)
    heartbeat: Optional[asyncio.Task] = None

    @property
    def is_open(self) -> bool:
        return self.state is SubscriptionState.OPEN

    def push(self, frame: str) -> bool:
        """Queue a frame for the client; ``False`` when its queue is full."""
        try:
            self.queue.put_nowait(frame)
        except asyncio.QueueFull:
            return False
        self.last_activity = datetime.now()
        return True

    def close(self) -> bool:
        """Detach listeners and stop the heartbeat; only the first call acts."""
        if self.state is SubscriptionState.CLOSED:
            return False
        self.state = SubscriptionState.CLOSED

        cleanup, self.cleanup = self.cleanup, []
        for unsubscribe in cleanup:
            unsubscribe()

        if self.heartbeat is not None:
            self.heartbeat.cancel()
            self.heartbeat = None

        # Wake a consumer blocked on the queue
        try:
            self.queue.put_nowait(None)
        except asyncio.QueueFull:
            pass
        return True

    def connected_seconds(self) -> float:
        return (datetime.now() - self.created_at).total_seconds()


class ChangeBroadcaster:
    """Streams permitted mutation events to each subscribed client.

    Every event is re-authorized as a ``read`` by the subscribing client
    before it is pushed. A record leaving the collection is always announced
    with its identity only (``{"id": ...}``), even to subscribers that may no
    longer see it, because it is gone from the collection by the time the
    permission is re-checked.
    """

    def __init__(
        self,
        resolver: PermissionResolver,
        metrics: Optional[MetricsCollector] = None,
        heartbeat_seconds: float = 20.0,
        max_connections: int = 1000,
        queue_size: int = 1000,
        disconnect_poll_seconds: float = 1.0,
    ):
        self.resolver = resolver
        self.metrics = metrics
        self.heartbeat_seconds = heartbeat_seconds
        self.max_connections = max_connections
        self.queue_size = queue_size
        self.disconnect_poll_seconds = disconnect_poll_seconds
        self.logger = get_logger("resources.sse.broadcaster")

        self.subscriptions: Dict[str, Subscription] = {}

    async def open(
        self,
        context: PermissionContext,
        resource: "Resource",
        record: Optional[Model] = None,
    ) -> Subscription:
        """Authorize and open a subscription to a collection or one record.

        Raises ``PermissionDenied`` when the client may not read the target;
        the subscription then never enters the open state.
        """
        if len(self.subscriptions) >= self.max_connections:
            raise ConnectionLimitExceeded(
                f"Maximum event-stream connections ({self.max_connections}) exceeded"
            )

        target = record if record is not None else resource.collection
        events = RECORD_EVENTS if record is not None else COLLECTION_EVENTS
        subscription = Subscription(
            subscription_id=str(uuid.uuid4()),
            resource=resource.name,
            context=context.for_operation(Operation.READ),
            target=target,
            events=events,
            queue=asyncio.Queue(maxsize=self.queue_size),
        )

        # Read is always resolved against the whole collection, as it is per event
        result = self.resolver.resolve(
            subscription.context, resource.permissions, resource.collection, resource=resource.name
        )
        if isinstance(result, Denied) or (
            record is not None and isinstance(result, FilteredSet) and not result.contains(record)
        ):
            subscription.state = SubscriptionState.CLOSED
            self.logger.warning(
                "sse: permission denied",
                resource=resource.name,
                record=getattr(record, "id", None),
                user=context.user_id
            )
            if self.metrics is not None:
                self.metrics.record_permission_denial(resource.name, Operation.READ.value)
            raise PermissionDenied("Access denied")

        for event in events:
            subscription.cleanup.append(
                target.on(event, self._listener(subscription, resource, event))
            )
        subscription.cleanup.append(lambda: self._forget(subscription))

        self.subscriptions[subscription.subscription_id] = subscription
        subscription.state = SubscriptionState.OPEN
        subscription.heartbeat = asyncio.get_running_loop().create_task(self._keep_alive(subscription))
        self._update_gauge()

        self.logger.debug(
            "sse: client connect",
            resource=resource.name,
            subscription_id=subscription.subscription_id,
            record=getattr(record, "id", None),
            user=context.user_id,
            total_subscriptions=len(self.subscriptions)
        )
        return subscription

    def close(self, subscription: Subscription) -> bool:
        if not subscription.close():
            return False
        self.logger.debug(
            "sse: client disconnect",
            resource=subscription.resource,
            subscription_id=subscription.subscription_id,
            time_connected=subscription.connected_seconds(),
            user=subscription.context.user_id,
            sent=subscription.sent_count
        )
        return True

    async def close_all(self):
        for subscription in list(self.subscriptions.values()):
            self.close(subscription)

    async def stream(self, subscription: Subscription, request: Any = None) -> AsyncGenerator[str, None]:
        """Yield frames until the client disconnects or the subscription closes."""
        # One pending get survives poll timeouts, so no dequeued frame is dropped
        pending: Optional[asyncio.Task] = None
        try:
            while subscription.is_open:
                if pending is None:
                    pending = asyncio.ensure_future(subscription.queue.get())
                done, _ = await asyncio.wait({pending}, timeout=self.disconnect_poll_seconds)
                if not done:
                    if request is not None and await request.is_disconnected():
                        break
                    continue

                frame, pending = pending.result(), None
                if frame is None:
                    break
                yield frame
        finally:
            if pending is not None:
                pending.cancel()
            self.close(subscription)

    def deliver(self, subscription: Subscription, resource: "Resource", event: str, record: Model) -> bool:
        """Push ``event`` for ``record`` if the subscriber may see it."""
        if not subscription.is_open:
            return False

        result = self.resolver.resolve(
            subscription.context, resource.permissions, resource.collection, resource=resource.name
        )

        if isinstance(result, Granted) or (isinstance(result, FilteredSet) and result.contains(record)):
            payload = record.to_json()
        elif event in DEPARTURE_EVENTS:
            payload = {"id": record.id}
        else:
            self.logger.debug(
                "sse: event filtered",
                resource=resource.name,
                event=event,
                record=record.id,
                user=subscription.context.user_id
            )
            return False

        if not subscription.push(format_event(event, payload)):
            self.logger.warning(
                "sse: client queue full, closing",
                resource=resource.name,
                subscription_id=subscription.subscription_id,
                user=subscription.context.user_id
            )
            self.close(subscription)
            return False

        subscription.sent_count += 1
        if self.metrics is not None:
            self.metrics.record_event_sent(resource.name, event)
        self.logger.debug(
            "sse: send " + event,
            resource=resource.name,
            record=record.id,
            user=subscription.context.user_id
        )
        return True

    def get_connection_stats(self) -> Dict[str, Any]:
        by_resource: Dict[str, int] = {}
        for subscription in self.subscriptions.values():
            by_resource[subscription.resource] = by_resource.get(subscription.resource, 0) + 1
        return {
            "total_connections": len(self.subscriptions),
            "max_connections": self.max_connections,
            "heartbeat_seconds": self.heartbeat_seconds,
            "resources": by_resource,
        }

    def _listener(self, subscription: Subscription, resource: "Resource", event: str) -> Callable[..., None]:
        def listener(record: Model, *args: Any) -> None:
            self.deliver(subscription, resource, event, record)
        return listener

    async def _keep_alive(self, subscription: Subscription):
        while subscription.is_open:
            await asyncio.sleep(self.heartbeat_seconds)
            if not subscription.is_open:
                break
            if not subscription.push(KEEPALIVE_FRAME):
                self.close(subscription)
                break
            self.logger.debug(
                "sse: client keepAlive",
                resource=subscription.resource,
                time_connected=subscription.connected_seconds(),
                user=subscription.context.user_id
            )

    def _forget(self, subscription: Subscription):
        self.subscriptions.pop(subscription.subscription_id, None)
        self._update_gauge()

    def _update_gauge(self):
        if self.metrics is not None:
            self.metrics.set_active_subscriptions(len(self.subscriptions))
