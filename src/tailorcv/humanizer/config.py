"""Cover-letter humanizer settings from the runtime config (``data/runtime.yaml``).

Normalization is total: any missing, malformed or out-of-range value falls
back to its default or is clamped, so callers never handle a config error.
"""

from __future__ import annotations

import logging
import math
import re
from pathlib import Path
from typing import Any

import yaml

from tailorcv.core.models import HumanizerConfig
from tailorcv.core.paths import get_data_dir

logger = logging.getLogger(__name__)

DEFAULT_MIN_NATURALNESS_SCORE = 75
DEFAULT_MAX_AI_RISK_SCORE = 35
DEFAULT_MAX_REWRITE_PASSES = 1
DEFAULT_DEBUG_LOGS = True

_LEADING_INT = re.compile(r"\s*([+-]?\d+)")


def _pick(section: dict[str, Any], camel: str, snake: str) -> Any:
    return section[camel] if camel in section else section.get(snake)


def _to_int_in_range(value: Any, low: int, high: int, default: int) -> int:
    """Numbers are truncated, strings read up to their first non-digit."""
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        if not math.isfinite(value):
            return default
        parsed = int(value)
    elif isinstance(value, str):
        match = _LEADING_INT.match(value)
        if match is None:
            return default
        parsed = int(match.group(1))
    else:
        return default
    return min(high, max(low, parsed))


def _to_bool(value: Any, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized == "true":
            return True
        if normalized == "false":
            return False
    return default


def resolve_cover_letter_humanizer_config(raw: Any) -> HumanizerConfig:
    """Build a ``HumanizerConfig`` from ``raw["llm"]["coverLetterHumanizer"]``.

    Accepts camelCase or snake_case keys. Never raises.
    """
    llm = raw.get("llm") if isinstance(raw, dict) else None
    section = llm.get("coverLetterHumanizer") if isinstance(llm, dict) else None
    if not isinstance(section, dict):
        section = {}

    return HumanizerConfig(
        min_naturalness_score=_to_int_in_range(
            _pick(section, "minNaturalnessScore", "min_naturalness_score"),
            0,
            100,
            DEFAULT_MIN_NATURALNESS_SCORE,
        ),
        max_ai_risk_score=_to_int_in_range(
            _pick(section, "maxAiRiskScore", "max_ai_risk_score"),
            0,
            100,
            DEFAULT_MAX_AI_RISK_SCORE,
        ),
        max_rewrite_passes=_to_int_in_range(
            _pick(section, "maxRewritePasses", "max_rewrite_passes"),
            0,
            3,
            DEFAULT_MAX_REWRITE_PASSES,
        ),
        debug_logs=_to_bool(_pick(section, "debugLogs", "debug_logs"), DEFAULT_DEBUG_LOGS),
    )


def get_default_runtime_config_path() -> Path:
    return get_data_dir() / "runtime.yaml"


def load_runtime_config(path: Path | None = None) -> dict[str, Any]:
    """Read the runtime YAML. A missing or non-mapping file reads as ``{}``."""
    path = path or get_default_runtime_config_path()
    if not path.exists():
        logger.debug("No runtime config at %s, using defaults", path)
        return {}
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if not isinstance(data, dict):
        logger.warning("Runtime config %s is not a mapping, ignoring it", path)
        return {}
    return data
