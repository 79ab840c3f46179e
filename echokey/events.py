"""
EchoKey Confirmation Event Channel

Publish/subscribe fan-out of ConfirmationEvents. Listeners are kept in an
indexed registry (subscription id -> handler) and dispatch iterates a
snapshot, so listeners may subscribe or unsubscribe while an event is
being delivered. Handlers may be plain callables or coroutine functions.

At-most-once processing of an event by a listener is the listener's
concern; the channel delivers each published event once to every listener
registered when publish() took its snapshot.
"""

import inspect
import itertools
import logging
import threading
from typing import Any, Awaitable, Callable, Dict, Union

from .models import ConfirmationEvent

logger = logging.getLogger(__name__)

Listener = Callable[[ConfirmationEvent], Union[None, Awaitable[Any]]]


class Subscription:
    """Unsubscribe handle returned by ConfirmationEvents.subscribe()."""

    def __init__(self, channel: "ConfirmationEvents", subscription_id: int):
        self._channel = channel
        self.id = subscription_id

    @property
    def active(self) -> bool:
        return self._channel.is_subscribed(self.id)

    def unsubscribe(self) -> bool:
        """Remove the listener. Returns False if it was already removed."""
        return self._channel.unsubscribe(self.id)

    def __call__(self) -> bool:
        return self.unsubscribe()


class ConfirmationEvents:

    def __init__(self):
        self._listeners: Dict[int, Listener] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def subscribe(self, listener: Listener) -> Subscription:
        if not callable(listener):
            raise TypeError("listener must be callable")
        with self._lock:
            subscription_id = next(self._ids)
            self._listeners[subscription_id] = listener
        return Subscription(self, subscription_id)

    def unsubscribe(self, subscription_id: int) -> bool:
        with self._lock:
            return self._listeners.pop(subscription_id, None) is not None

    def is_subscribed(self, subscription_id: int) -> bool:
        with self._lock:
            return subscription_id in self._listeners

    @property
    def listener_count(self) -> int:
        with self._lock:
            return len(self._listeners)

    async def publish(self, event: ConfirmationEvent) -> int:
        """
        Deliver an event to every current listener.

        A failing listener is logged and does not prevent delivery to the
        others.

        Returns:
            Number of listeners that handled the event without error
        """
        with self._lock:
            snapshot = list(self._listeners.items())

        delivered = 0
        for subscription_id, listener in snapshot:
            try:
                result = listener(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(
                    "Confirmation listener %s failed for %s", subscription_id, event.transaction_id
                )
                continue
            delivered += 1
        return delivered
