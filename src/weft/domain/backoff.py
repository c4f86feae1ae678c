# src/weft/domain/backoff.py
"""
Retry delay policies.

Attempt numbers are 1-based: the delay awaited after the first failed
attempt is `delay_ms_for(1)`.
"""
from __future__ import annotations

from typing import Annotated, Any, Callable, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class FixedBackoff(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: Literal["fixed"] = "fixed"
    delay_ms: float = Field(default=0, ge=0)

    def delay_ms_for(self, attempt: int) -> float:
        return self.delay_ms


class ExponentialBackoff(BaseModel):
    """
    delay = base_ms * factor ** (attempt - 1), capped at max_ms when set.
    """
    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: Literal["exponential"] = "exponential"
    base_ms: float = Field(default=100, ge=0)
    factor: float = Field(default=2.0, ge=1.0)
    max_ms: Optional[float] = Field(default=None, ge=0)

    def delay_ms_for(self, attempt: int) -> float:
        delay = self.base_ms * (self.factor ** max(attempt - 1, 0))
        if self.max_ms is not None:
            delay = min(delay, self.max_ms)
        return delay


class CustomBackoff(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: Literal["custom"] = "custom"
    strategy: Callable[[int], float]

    def delay_ms_for(self, attempt: int) -> float:
        return max(0.0, float(self.strategy(attempt)))


BackoffPolicy = Annotated[
    Union[FixedBackoff, ExponentialBackoff, CustomBackoff],
    Field(discriminator="kind"),
]


def coerce_backoff(value: Any) -> Any:
    """
    Accepts the shorthand forms: None, a number of milliseconds, or a
    callable taking the attempt number. Anything else is left for pydantic.
    """
    if value is None:
        return FixedBackoff()
    if isinstance(value, bool):
        raise ValueError("retry delay must be a number, a callable or a backoff policy")
    if isinstance(value, (int, float)):
        return FixedBackoff(delay_ms=value)
    if callable(value) and not isinstance(value, BaseModel):
        return CustomBackoff(strategy=value)
    return value
