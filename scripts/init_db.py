#!/usr/bin/env python3
from __future__ import annotations

import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_ROOT = REPO_ROOT / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

from weft.config import load_settings
from weft.logging import configure_logging, get_logger
from weft.storage import SQLiteDB, apply_migrations


def main() -> int:
    settings = load_settings()
    configure_logging(settings.log_level)
    log = get_logger(__name__)

    if settings.state_path is None:
        log.error("WEFT_STATE_PATH is not set; nothing to initialize.")
        return 1

    with SQLiteDB(settings.state_path).session() as conn:
        applied = apply_migrations(conn)

    log.info("State DB initialized at %s (%d migration(s) applied)", settings.state_path, applied)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
