"""Synchronous publish/subscribe channels used by the registry."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger("athena.core.bus")

Listener = Callable[[str, Dict[str, Any]], Any]


@dataclass
class Subscription:
    callback: Listener
    name: Optional[str] = None
    once: bool = False
    owner: Optional[str] = None

    def matches(self, name: str) -> bool:
        return self.name is None or self.name == name


class Channel:
    """An ordered list of listeners receiving ``(name, args)`` messages.

    Delivery is synchronous and follows subscription order. A listener that
    raises is logged and does not stop delivery to the listeners after it.
    """

    def __init__(self, label: str) -> None:
        self.label = label
        self._subscriptions: List[Subscription] = []

    def subscribe(
        self,
        callback: Listener,
        *,
        name: Optional[str] = None,
        once: bool = False,
        owner: Optional[str] = None,
    ) -> Subscription:
        subscription = Subscription(callback=callback, name=name, once=once, owner=owner)
        self._subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, callback: Listener) -> bool:
        for idx, subscription in enumerate(self._subscriptions):
            if subscription.callback == callback:
                del self._subscriptions[idx]
                return True
        return False

    def drop_owner(self, owner: str) -> int:
        """Remove every subscription attributed to ``owner``."""

        before = len(self._subscriptions)
        self._subscriptions = [s for s in self._subscriptions if s.owner != owner]
        return before - len(self._subscriptions)

    def publish(self, name: str, args: Dict[str, Any]) -> int:
        delivered = 0
        # Snapshot so listeners may (un)subscribe while we deliver.
        for subscription in list(self._subscriptions):
            if not subscription.matches(name):
                continue
            if subscription.once:
                try:
                    self._subscriptions.remove(subscription)
                except ValueError:
                    continue
            try:
                subscription.callback(name, args)
            except Exception:
                logger.exception(
                    "Listener %r on '%s' failed handling '%s'.",
                    subscription.callback,
                    self.label,
                    name,
                )
            delivered += 1
        return delivered

    def __len__(self) -> int:
        return len(self._subscriptions)


__all__ = ["Channel", "Listener", "Subscription"]
