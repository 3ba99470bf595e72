"""LLM configuration: API key, timeout and the last-resort fallback model.

On import, this module loads the project's ``.env`` file (if present) so that
keys set there are available via ``os.environ``.
"""

from __future__ import annotations

import logging
import os

from dotenv import load_dotenv

from tailorcv.core.models import LLMProvider, ModelSpec
from tailorcv.core.paths import find_project_root as _find_root

logger = logging.getLogger(__name__)

# ``override=False`` means existing env vars win.
_env_path = _find_root() / ".env"
load_dotenv(_env_path, override=False)
logger.debug("Loaded .env from %s (exists=%s)", _env_path, _env_path.exists())

# Used when routing resolves nothing for the adaptation scenario.
FALLBACK_MODEL = ModelSpec(
    provider=LLMProvider.OPENAI,
    model_key="gpt-4.1-mini",
    input_price_per_1m_usd=0.4,
    output_price_per_1m_usd=1.6,
    cached_input_price_per_1m_usd=0.0,
)

DEFAULT_TIMEOUT_SECONDS = 90.0

# OpenRouter namespaces per catalog provider.
OPENROUTER_PREFIXES: dict[LLMProvider, str] = {
    LLMProvider.OPENAI: "openai",
    LLMProvider.GEMINI: "google",
}


def get_api_key() -> str:
    """Return the OpenRouter API key from the environment.

    Raises ``RuntimeError`` if the key is not set so callers get a clear
    message instead of a cryptic 401 from the API.
    """
    key = os.environ.get("OPENROUTER_API_KEY", "")
    logger.debug("OPENROUTER_API_KEY present: %s", bool(key))
    if not key:
        raise RuntimeError(
            "OPENROUTER_API_KEY is not set. "
            "Add it to your .env file or export it in your shell."
        )
    return key


def get_llm_timeout() -> float:
    """Per-call timeout in seconds, from ``TAILORCV_LLM_TIMEOUT_SECONDS``."""
    raw = os.environ.get("TAILORCV_LLM_TIMEOUT_SECONDS", "")
    if not raw:
        return DEFAULT_TIMEOUT_SECONDS
    try:
        value = float(raw)
    except ValueError:
        logger.warning("Ignoring invalid TAILORCV_LLM_TIMEOUT_SECONDS=%r", raw)
        return DEFAULT_TIMEOUT_SECONDS
    return value if value > 0 else DEFAULT_TIMEOUT_SECONDS


def openrouter_model_name(spec: ModelSpec) -> str:
    """Map a catalog model to its OpenRouter identifier (``openai/gpt-4.1-mini``)."""
    if "/" in spec.model_key:
        return spec.model_key
    return f"{OPENROUTER_PREFIXES[spec.provider]}/{spec.model_key}"
