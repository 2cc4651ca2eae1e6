"""Explicit engine configuration.

The config object is built once by the caller and passed down; nothing in the
engine reads the environment on its own.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, replace
from typing import Any, Optional

from dotenv import find_dotenv, load_dotenv

logger = logging.getLogger(__name__)

_TRUE = ("1", "true", "yes", "on")
_FALSE = ("0", "false", "no", "off")


@dataclass(frozen=True)
class EngineConfig:
    conservative_mode: bool = True
    exacta_base_unit: float = 2.0       # $ per exacta combination
    trifecta_base_unit: float = 1.0     # $ per trifecta combination
    record_metrics: bool = False
    metrics_db_path: str = "decisions.db"
    analyzer_timeout_s: float = 30.0

    def with_overrides(self, **changes) -> "EngineConfig":
        """Copy with the non-None keyword values replaced."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})


def parse_bool(raw: Any) -> Optional[bool]:
    """True/False from a bool or a flag string ("true", "0", "off", ...); None if neither."""
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, int):
        return raw != 0 if raw in (0, 1) else None
    if isinstance(raw, str):
        value = raw.strip().lower()
        if value in _TRUE:
            return True
        if value in _FALSE:
            return False
    return None


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    value = parse_bool(raw)
    if value is None:
        logger.warning(f"Ignoring {name}={raw!r}: not a boolean, using {default}")
        return default
    return value


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"Ignoring {name}={raw!r}: not a number, using {default}")
        return default


def load_config() -> EngineConfig:
    """Build an EngineConfig from the environment (and .env if present)."""
    load_dotenv(find_dotenv(usecwd=True))
    defaults = EngineConfig()
    return EngineConfig(
        conservative_mode=_env_bool("TICKET_CONSERVATIVE_MODE", defaults.conservative_mode),
        exacta_base_unit=_env_float("TICKET_EXACTA_UNIT", defaults.exacta_base_unit),
        trifecta_base_unit=_env_float("TICKET_TRIFECTA_UNIT", defaults.trifecta_base_unit),
        record_metrics=_env_bool("TICKET_RECORD_METRICS", defaults.record_metrics),
        metrics_db_path=os.getenv("TICKET_METRICS_DB") or defaults.metrics_db_path,
        analyzer_timeout_s=_env_float("TICKET_ANALYZER_TIMEOUT", defaults.analyzer_timeout_s),
    )
