"""Synchronous named-event emitter shared by the orchestrator, scheduler and job runner."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

Listener = Callable[..., Any]


@dataclass(slots=True, eq=False)
class _Subscription:
    listener: Listener
    once: bool


class EventEmitter:
    """Dispatch events to listeners in registration order.

    Listeners run synchronously inside ``emit``; an exception raised by a
    listener propagates to the emitting call site.
    """

    def __init__(self) -> None:
        self._subscriptions: dict[str, list[_Subscription]] = {}

    def on(self, event: str, listener: Listener) -> Callable[[], None]:
        """Register listener and return a callable that unregisters it."""

        self._subscriptions.setdefault(_key(event), []).append(_Subscription(listener, once=False))
        return lambda: self.off(event, listener)

    def once(self, event: str, listener: Listener) -> Callable[[], None]:
        self._subscriptions.setdefault(_key(event), []).append(_Subscription(listener, once=True))
        return lambda: self.off(event, listener)

    def off(self, event: str, listener: Listener) -> None:
        subscriptions = self._subscriptions.get(_key(event))
        if not subscriptions:
            return
        for index, subscription in enumerate(subscriptions):
            if subscription.listener == listener:
                del subscriptions[index]
                break
        if not subscriptions:
            del self._subscriptions[_key(event)]

    def remove_all_listeners(self, event: str | None = None) -> None:
        if event is None:
            self._subscriptions.clear()
        else:
            self._subscriptions.pop(_key(event), None)

    def listener_count(self, event: str) -> int:
        return len(self._subscriptions.get(_key(event), ()))

    def emit(self, event: str, *args: Any) -> bool:
        """Call every listener registered for event; return whether any was called."""

        subscriptions = self._subscriptions.get(_key(event))
        if not subscriptions:
            return False
        for subscription in list(subscriptions):
            if subscription.once and subscription in subscriptions:
                subscriptions.remove(subscription)
            subscription.listener(*args)
        return True


def _key(event: str) -> str:
    return event.value if isinstance(event, Enum) else event
