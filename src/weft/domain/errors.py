# src/weft/domain/errors.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional


@dataclass
class WeftError(Exception):
    """
    Base domain error.

    The host router maps these to HTTP responses consistently.
    """
    message: str
    code: str = "WEFT_ERROR"
    details: Optional[dict[str, Any]] = None

    def __str__(self) -> str:
        return self.message


@dataclass
class ConfigError(WeftError):
    """
    Invalid configuration call (duplicate name, unknown id, illegal pause/resume).

    Never raised to callers: it is logged and the call becomes a no-op.
    """
    code: str = "CONFIG_ERROR"


@dataclass
class CycleError(WeftError):
    code: str = "CYCLE_DETECTED"


@dataclass
class AttemptFailure(WeftError):
    """
    A single attempt raised. Retryable; consumed by the Supervisor.
    """
    code: str = "ATTEMPT_FAILED"


@dataclass
class AttemptTimeout(AttemptFailure):
    code: str = "ATTEMPT_TIMEOUT"


@dataclass
class TerminalFailure(WeftError):
    """
    Every attempt of a worker failed. The unit is already in `error` state.
    """
    code: str = "TERMINAL_FAILURE"


@dataclass
class NotFoundError(WeftError):
    code: str = "NOT_FOUND"
