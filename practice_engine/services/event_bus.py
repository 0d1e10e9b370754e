"""
services/event_bus.py

Minimal synchronous publish/subscribe surface for engine events.
"""

import logging
from typing import Callable, List

from practice_engine.models.events import EngineEvent

logger = logging.getLogger(__name__)

Listener = Callable[[EngineEvent], None]


class EventEmitter:
    def __init__(self) -> None:
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a callable that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def emit(self, event: EngineEvent) -> None:
        # A broken subscriber must not corrupt engine state mid-transition.
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception(f"Event listener failed on {event.kind}")
