"""
Server-Sent Events streaming of collection changes.
"""

from .broadcaster import (
    COLLECTION_EVENTS,
    KEEPALIVE_FRAME,
    RECORD_EVENTS,
    ChangeBroadcaster,
    Subscription,
    SubscriptionState,
    format_event,
)

__all__ = [
    "COLLECTION_EVENTS",
    "KEEPALIVE_FRAME",
    "RECORD_EVENTS",
    "ChangeBroadcaster",
    "Subscription",
    "SubscriptionState",
    "format_event",
]
