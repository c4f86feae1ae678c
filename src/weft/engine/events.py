# src/weft/engine/events.py
"""
Typed publish/subscribe for lifecycle notifications. Pure fan-out.
"""
from __future__ import annotations

import threading
from typing import Any, Callable, Optional

from weft.domain.models import Event
from weft.domain.states import EventKind
from weft.logging import get_logger

_LOG = get_logger(__name__)

Listener = Callable[[Event], None]
Unsubscribe = Callable[[], None]


class EventBus:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._listeners: dict[EventKind, list[Listener]] = {kind: [] for kind in EventKind}

    def subscribe(self, kind: EventKind, listener: Listener) -> Unsubscribe:
        kind = EventKind(kind)
        with self._lock:
            self._listeners[kind].append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                listeners = self._listeners[kind]
                if listener in listeners:
                    listeners.remove(listener)

        return _unsubscribe

    def subscribe_all(self, listener: Listener) -> Unsubscribe:
        """
        Catch-all subscription: receives every kind.
        """
        handles = [self.subscribe(kind, listener) for kind in EventKind]

        def _unsubscribe() -> None:
            for handle in handles:
                handle()

        return _unsubscribe

    def publish(self, event: Event) -> None:
        # Listeners run outside the lock so they may subscribe/publish themselves.
        with self._lock:
            listeners = list(self._listeners[event.kind])
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                _LOG.exception("Event listener failed for %s event (continuing).", event.kind)


class MilestoneEmitter:
    def __init__(self, bus: EventBus) -> None:
        self._bus = bus

    def emit(self, milestone_id: str, payload: Optional[dict[str, Any]] = None) -> None:
        self._bus.publish(
            Event(kind=EventKind.MILESTONE, milestone_id=milestone_id, payload=payload or {})
        )

    def emit_for_unit(self, unit_id: str, stage: str, payload: Optional[dict[str, Any]] = None) -> None:
        self._bus.publish(
            Event(
                kind=EventKind.MILESTONE,
                unit_id=unit_id,
                milestone_id=f"unit:{unit_id}:{stage}",
                payload=payload or {},
            )
        )
