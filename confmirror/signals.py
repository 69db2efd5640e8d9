"""Explicit observer lists for registry notifications."""

import logging
from typing import Any, Callable

logger = logging.getLogger(__name__)

Listener = Callable[..., Any]


class Subscription:
    """A revocable link between a Signal and one listener."""

    __slots__ = ("_signal", "callback", "_active")

    def __init__(self, signal: "Signal", callback: Listener):
        self._signal = signal
        self.callback = callback
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def cancel(self) -> None:
        """Detach the listener. Safe to call more than once."""
        if not self._active:
            return
        self._active = False
        self._signal._discard(self)


class Signal:
    """A named notification with an ordered list of listeners.

    Listeners are called synchronously in subscription order. A subscription
    cancelled while an emit is in progress is skipped for the rest of that
    emit. A listener that raises is logged and does not stop delivery to the
    remaining listeners.
    """

    def __init__(self, name: str):
        self.name = name
        self._subscriptions: list[Subscription] = []

    def connect(self, callback: Listener) -> Subscription:
        """Subscribe a listener.

        Args:
            callback: Called with the emitted arguments.

        Returns:
            Subscription that detaches the listener when cancelled.
        """
        subscription = Subscription(self, callback)
        self._subscriptions.append(subscription)
        return subscription

    def emit(self, *args: Any) -> int:
        """Notify every active listener.

        Returns:
            Number of listeners invoked.
        """
        called = 0
        for subscription in list(self._subscriptions):
            if not subscription.active:
                continue
            called += 1
            try:
                subscription.callback(*args)
            except Exception:
                logger.exception(f"Listener for '{self.name}' signal failed")
        return called

    def _discard(self, subscription: Subscription) -> None:
        try:
            self._subscriptions.remove(subscription)
        except ValueError:
            pass

    def __len__(self) -> int:
        return len(self._subscriptions)

    def __repr__(self) -> str:
        return f"Signal({self.name!r}, listeners={len(self)})"
