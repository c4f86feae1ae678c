# src/weft/engine/visualizer.py
from __future__ import annotations

import logging
from typing import Any, Callable, Optional

from weft.domain.models import Event
from weft.domain.states import EventKind, UnitStatus
from weft.logging import get_logger

from .events import EventBus, Unsubscribe

RenderFn = Callable[[str, str, dict[str, Any]], None]

_EVENT_STATUS = {
    EventKind.START: UnitStatus.RUNNING,
    EventKind.COMPLETE: UnitStatus.COMPLETED,
    EventKind.ERROR: UnitStatus.ERROR,
}


class LoggingVisualizer:
    """
    Renders unit status changes and milestones. Writes through logging unless
    a render function is supplied; the function receives
    ("status" | "milestone", message, metadata).
    """

    def __init__(
        self,
        render_fn: Optional[RenderFn] = None,
        *,
        logger: Optional[logging.Logger] = None,
        level: int = logging.INFO,
    ) -> None:
        self._render_fn = render_fn
        self._log = logger or get_logger(__name__)
        self._level = level

    def render_unit_status(self, unit_id: str, status: UnitStatus, message: Optional[str] = None) -> None:
        msg = message or f"Unit {unit_id} is now {status}"
        self._render("status", msg, {"unit_id": unit_id, "status": status})

    def render_milestone(
        self,
        milestone_id: str,
        payload: Optional[dict[str, Any]] = None,
        message: Optional[str] = None,
    ) -> None:
        msg = message or f"Milestone reached: {milestone_id}"
        self._render("milestone", msg, {"milestone_id": milestone_id, "payload": payload or {}})

    def attach(self, bus: EventBus) -> Unsubscribe:
        return bus.subscribe_all(self._on_event)

    def _on_event(self, event: Event) -> None:
        status = _EVENT_STATUS.get(event.kind)
        if status is not None and event.unit_id is not None:
            self.render_unit_status(event.unit_id, status)
        elif event.kind == EventKind.MILESTONE and event.milestone_id is not None:
            self.render_milestone(event.milestone_id, event.payload)

    def _render(self, kind: str, message: str, meta: dict[str, Any]) -> None:
        if self._render_fn is not None:
            self._render_fn(kind, message, meta)
        else:
            self._log.log(self._level, "%s", message)
