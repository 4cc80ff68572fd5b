"""In-process message channel between the studio and embedded frames.

Models the browser's ``window.postMessage`` seam: every inbound message
carries the sender's origin and a handle to reply to.  :class:`MessageBus`
fans each message out to all registered listeners.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

logger = logging.getLogger("stagingbridge.channel")


@runtime_checkable
class MessageTarget(Protocol):
    """Something a reply can be posted to (a frame's window)."""

    def post_message(self, message: dict[str, Any], target_origin: str) -> None:
        """Deliver *message* if the target's origin is *target_origin*."""
        ...


@dataclass(frozen=True)
class MessageEvent:
    """One inbound message: untyped payload plus sender identity."""

    data: Any
    origin: str
    source: MessageTarget | None = None


@dataclass
class RecordingTarget:
    """A :class:`MessageTarget` that keeps everything posted to it.

    Stands in for an embedded frame; replies whose *target_origin* does
    not match :attr:`origin` are dropped, as a browser would.
    """

    origin: str
    received: list[dict[str, Any]] = field(default_factory=list)
    dropped: list[tuple[dict[str, Any], str]] = field(default_factory=list)

    def post_message(self, message: dict[str, Any], target_origin: str) -> None:
        if target_origin not in (self.origin, "*"):
            self.dropped.append((message, target_origin))
            return
        self.received.append(message)


Listener = Callable[[MessageEvent], Any]


class MessageBus:
    """Fan-out dispatcher for :class:`MessageEvent` objects.

    Listener errors are logged and do not stop delivery to the others.
    Thread-safety is ensured via a :class:`threading.Lock` around the
    listener list mutations.
    """

    def __init__(self) -> None:
        self._listeners: list[Listener] = []
        self._lock = threading.Lock()

    def add_listener(self, listener: Listener) -> None:
        with self._lock:
            if listener not in self._listeners:
                self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    @property
    def listener_count(self) -> int:
        with self._lock:
            return len(self._listeners)

    def dispatch(self, event: MessageEvent) -> None:
        """Deliver *event* to every listener, synchronously and in order."""
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                logger.exception("Message listener failed for origin %s", event.origin)

    def post(self, data: Any, origin: str, source: MessageTarget | None = None) -> None:
        self.dispatch(MessageEvent(data=data, origin=origin, source=source))
