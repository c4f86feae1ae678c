from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


def _get_env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise ValueError(f"Environment variable {name} must be an int, got: {raw!r}") from e
    return value


def _get_env_str(name: str, default: str) -> str:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw


def _get_env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    value = raw.strip().lower()
    if value in {"1", "true", "yes", "on"}:
        return True
    if value in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Environment variable {name} must be a boolean, got: {raw!r}")


def _get_env_positive_int(name: str, default: int) -> int:
    value = _get_env_int(name, default)
    if value <= 0:
        raise ValueError(f"{name} must be > 0")
    return value


@dataclass(frozen=True)
class Settings:
    # Worker pool
    pool_size: int = 2
    pool_tick_ms: int = 10

    # Background loop / watcher
    loop_interval_ms: int = 1_000
    watcher_interval_ms: int = 60_000
    idle_threshold_ms: int = 600_000
    auto_unpause: bool = False

    # Upper bound on threads used by parallel, batched and wave joins
    max_concurrency: int = 32

    # Optional SQLite snapshot file
    state_path: Optional[Path] = None

    log_level: str = "info"

    # Optional HTTP host (weft.main)
    host: str = "127.0.0.1"
    port: int = 8000

    @property
    def pool_tick_s(self) -> float:
        return self.pool_tick_ms / 1000.0

    @property
    def loop_interval_s(self) -> float:
        return self.loop_interval_ms / 1000.0


def load_settings() -> Settings:
    """
    Loads settings from env vars with sane defaults.

    Env vars:
      - WEFT_POOL_SIZE (default: 2)
      - WEFT_POOL_TICK_MS (default: 10)
      - WEFT_LOOP_INTERVAL_MS (default: 1000)
      - WEFT_WATCHER_INTERVAL_MS (default: 60000)
      - WEFT_IDLE_THRESHOLD_MS (default: 600000)
      - WEFT_AUTO_UNPAUSE (default: false)
      - WEFT_MAX_CONCURRENCY (default: 32)
      - WEFT_STATE_PATH (default: unset, no persistence)
      - WEFT_LOG_LEVEL (default: info)
      - WEFT_HOST (default: 127.0.0.1)
      - WEFT_PORT (default: 8000)
    """
    raw_state_path = _get_env_str("WEFT_STATE_PATH", "")
    state_path = Path(raw_state_path).expanduser() if raw_state_path else None

    return Settings(
        pool_size=_get_env_positive_int("WEFT_POOL_SIZE", 2),
        pool_tick_ms=_get_env_positive_int("WEFT_POOL_TICK_MS", 10),
        loop_interval_ms=_get_env_positive_int("WEFT_LOOP_INTERVAL_MS", 1_000),
        watcher_interval_ms=_get_env_positive_int("WEFT_WATCHER_INTERVAL_MS", 60_000),
        idle_threshold_ms=_get_env_positive_int("WEFT_IDLE_THRESHOLD_MS", 600_000),
        auto_unpause=_get_env_bool("WEFT_AUTO_UNPAUSE", False),
        max_concurrency=_get_env_positive_int("WEFT_MAX_CONCURRENCY", 32),
        state_path=state_path,
        log_level=_get_env_str("WEFT_LOG_LEVEL", "info").lower(),
        host=_get_env_str("WEFT_HOST", "127.0.0.1"),
        port=_get_env_positive_int("WEFT_PORT", 8000),
    )
