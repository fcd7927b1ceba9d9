"""In-process change notifications for persisted tables."""
from __future__ import annotations

from dataclasses import dataclass, field
from itertools import count
from threading import Lock
from typing import Any, Callable, Dict, List

from load_coordinator.core.logging import logger


ChangeCallback = Callable[[Dict[str, Any]], None]


@dataclass
class Subscription:
    """Handle returned by ``ChangeFeed.subscribe``."""

    subscription_id: int
    table: str
    _feed: "ChangeFeed" = field(repr=False)

    def unsubscribe(self) -> None:
        self._feed.unsubscribe(self)


class ChangeFeed:
    """Fan-out of insert/update/delete notices to table subscribers.

    Payloads only name the table, the event and the touched keys; subscribers
    are expected to reload rather than merge.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._ids = count(1)
        self._subscribers: Dict[str, Dict[int, ChangeCallback]] = {}

    def subscribe(self, table: str, callback: ChangeCallback) -> Subscription:
        with self._lock:
            subscription = Subscription(subscription_id=next(self._ids), table=table, _feed=self)
            self._subscribers.setdefault(table, {})[subscription.subscription_id] = callback
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            self._subscribers.get(subscription.table, {}).pop(subscription.subscription_id, None)

    def subscriber_count(self, table: str) -> int:
        with self._lock:
            return len(self._subscribers.get(table, {}))

    def publish(self, table: str, event: str, keys: List[Any]) -> None:
        with self._lock:
            callbacks = list(self._subscribers.get(table, {}).values())
        payload = {"table": table, "event": event, "keys": keys}
        for callback in callbacks:
            try:
                callback(payload)
            except Exception as exc:
                logger.warning("Change subscriber failed", table=table, change_event=event, error=str(exc))
