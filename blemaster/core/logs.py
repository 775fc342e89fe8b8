"""Package log level switch."""

from __future__ import annotations

import logging

PACKAGE_LOGGER = "blemaster"

# 0 silences the package, 1 errors only, 2 adds warnings, 3 logs everything.
_DEBUG_LEVELS = {
    0: logging.CRITICAL + 10,
    1: logging.ERROR,
    2: logging.WARNING,
    3: logging.DEBUG,
}


def set_debug_level(level: int) -> None:
    if level not in _DEBUG_LEVELS:
        raise ValueError(f"Debug level must be one of {sorted(_DEBUG_LEVELS)}, got {level}")
    logging.getLogger(PACKAGE_LOGGER).setLevel(_DEBUG_LEVELS[level])


def get_debug_level() -> int:
    current = logging.getLogger(PACKAGE_LOGGER).level
    for level, mapped in _DEBUG_LEVELS.items():
        if mapped == current:
            return level
    return 1
