# BeoSound 5c
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
EventBroadcaster — subscription registry and push-event fan-out.

Each connected client has at most one Subscription: a set of event types and
a set of zone ids (empty = all zones).  Delivery is fire-and-forget: a write
is queued on the client's transport and never awaited, so a slow or dead
subscriber cannot hold up the reconciler.  Dead subscribers are reaped when
their connection closes, not from inside broadcast().
"""

import logging
import time
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, Protocol

from . import protocol
from .reconciler import Notification

logger = logging.getLogger(__name__)


class Subscriber(Protocol):
    """What the broadcaster needs from a client connection."""

    @property
    def closed(self) -> bool: ...

    def write(self, data: bytes) -> None: ...


@dataclass
class Subscription:
    subscriber: Subscriber
    events: frozenset[str]
    zones: frozenset[str] = frozenset()
    created_at: float = field(default_factory=time.time)

    def matches(self, event: str, zone_id: str | None) -> bool:
        if event not in self.events:
            return False
        if zone_id is None or not self.zones:
            return True
        return zone_id in self.zones


class EventBroadcaster:
    def __init__(self):
        self._subscriptions: dict[Subscriber, Subscription] = {}

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def subscribe(self, subscriber: Subscriber, events: Iterable[str],
                  zone_ids: Iterable[str] = ()) -> Subscription:
        """Register or replace the subscription for *subscriber*."""
        subscription = Subscription(subscriber, frozenset(events), frozenset(zone_ids))
        replaced = subscriber in self._subscriptions
        self._subscriptions[subscriber] = subscription
        logger.info("%s subscription: events=%s zones=%s (%d subscribers)",
                    "Replaced" if replaced else "New",
                    sorted(subscription.events), sorted(subscription.zones) or "all",
                    len(self._subscriptions))
        return subscription

    def unsubscribe(self, subscriber: Subscriber) -> bool:
        """Drop the subscription for *subscriber*. Safe to call when there is none."""
        removed = self._subscriptions.pop(subscriber, None) is not None
        if removed:
            logger.info("Subscription removed (%d subscribers)", len(self._subscriptions))
        return removed

    def get(self, subscriber: Subscriber) -> Subscription | None:
        return self._subscriptions.get(subscriber)

    def broadcast(self, event: str, data: Any, zone_id: str | None = None) -> int:
        """Push an event to every matching subscriber. Returns the delivery count."""
        if not self._subscriptions:
            return 0

        message = None
        delivered = 0
        for subscriber, subscription in list(self._subscriptions.items()):
            if not subscription.matches(event, zone_id):
                continue
            if message is None:
                message = protocol.encode(protocol.make_event(event, data, zone_id))
            try:
                if subscriber.closed:
                    continue
                subscriber.write(message)
                delivered += 1
            except Exception as e:
                logger.warning("Error sending %s event: %s", event, e)

        if delivered:
            logger.debug("Broadcast %s (zone=%s) to %d subscribers", event, zone_id, delivered)
        return delivered

    def publish(self, notification: Notification):
        """Notification sink for the Reconciler."""
        self.broadcast(notification.event, notification.data, notification.zone_id)
