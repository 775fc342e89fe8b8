"""Engine tunables, loaded from the user's config directory."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, replace
from pathlib import Path

from blemaster.core.errors import ConfigError, ProfileLoadError, ProfileValidationError
from blemaster.core.profile_loader import read_yaml, validate_document

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class EngineConfig:
    operation_timeout_s: float = 5.0
    poll_interval_s: float = 0.1
    prepare_delay_s: float = 0.05
    prepare_timeout_s: float = 10.0
    scan_throttle_s: float = 1.0
    connect_timeout_s: float = 10.0
    debug_level: int = 1


def config_path() -> Path:
    xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    return xdg_config / "blemaster/config.yaml"


def load_config(path: Path | str | None = None) -> EngineConfig:
    """Read ``config.yaml``; a missing file yields the defaults."""
    source = Path(path) if path is not None else config_path()
    if not source.exists():
        LOGGER.debug("No config file at %s, using defaults", source)
        return EngineConfig()

    try:
        doc = read_yaml(source)
        validate_document(doc, "config.schema.json", source)
    except (ProfileLoadError, ProfileValidationError) as exc:
        raise ConfigError(str(exc)) from exc

    overrides = {
        key: float(value) if key.endswith("_s") else int(value)
        for key, value in doc.items()
    }
    return replace(EngineConfig(), **overrides)
