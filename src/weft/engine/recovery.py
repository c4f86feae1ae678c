# src/weft/engine/recovery.py
from __future__ import annotations

from typing import Iterable

from weft.domain.models import UnitSnapshot
from weft.domain.states import UnitStatus
from weft.logging import get_logger

_LOG = get_logger(__name__)

RECOVERED_MESSAGE = "Recovered: interrupted while running; reset to idle"


def recover_snapshots(snapshots: Iterable[UnitSnapshot]) -> tuple[list[UnitSnapshot], int]:
    """
    Crash recovery for persisted snapshots:
    - a unit saved as RUNNING was interrupted by a restart and comes back IDLE

    Returns (recovered snapshots, number of units transitioned).
    """
    recovered: list[UnitSnapshot] = []
    transitioned = 0
    for snap in snapshots:
        if snap.status == UnitStatus.RUNNING:
            snap = snap.model_copy(update={"status": UnitStatus.IDLE, "error": RECOVERED_MESSAGE})
            transitioned += 1
        recovered.append(snap)
    if transitioned:
        _LOG.info("Recovery reset %d stale RUNNING unit(s) to idle.", transitioned)
    return recovered, transitioned
