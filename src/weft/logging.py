from __future__ import annotations

import logging
import sys
from typing import Optional

_HANDLER_NAME = "weft-stdout"


def configure_logging(log_level: str = "info") -> None:
    """
    Routes weft's records to stdout for standalone use (`weft.main`,
    scripts). Hosts that embed the engine usually skip this and configure
    the `weft` logger themselves.

    Calling it again swaps weft's own handler; other root handlers stay.
    """
    level = logging.getLevelNamesMapping().get(log_level.upper().strip(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)
    for h in list(root.handlers):
        if h.get_name() == _HANDLER_NAME:
            root.removeHandler(h)

    handler = logging.StreamHandler(sys.stdout)
    handler.set_name(_HANDLER_NAME)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(
        fmt="%(asctime)s %(levelname)s %(name)s [%(threadName)s] - %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S%z",
    ))
    root.addHandler(handler)


def get_logger(name: Optional[str] = None) -> logging.Logger:
    return logging.getLogger(name if name else "weft")
