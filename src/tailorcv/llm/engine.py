"""Single-call LLM gateway for the tailorcv pipeline.

Framework choice: **Pydantic AI** over OpenRouter, as a plain
"prompt in, text + usage out" capability. Orchestrators own retry and
fallback policy; this module never retries.

Every call is attributed to a scenario, role and user in the log so cost can
be traced per scenario, and is bounded by its own timeout.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from pydantic import BaseModel, Field
from pydantic_ai import Agent
from pydantic_ai.exceptions import ModelHTTPError, UnexpectedModelBehavior
from pydantic_ai.models import Model
from pydantic_ai.models.openai import OpenAIChatModel
from pydantic_ai.providers.openrouter import OpenRouterProvider

from tailorcv.core.models import (
    LLMProvider,
    ModelSpec,
    ProviderType,
    ReasoningEffort,
    ResponseFormat,
    Role,
    ScenarioKey,
    StepUsage,
)
from tailorcv.llm.config import get_api_key, get_llm_timeout, openrouter_model_name

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class LLMError(Exception):
    """A provider call failed (transport, HTTP status, timeout, malformed output)."""

    def __init__(self, message: str, provider: LLMProvider | str, code: str | None = None):
        self.message = message
        self.provider = provider.value if isinstance(provider, LLMProvider) else provider
        self.code = code
        super().__init__(message)

    def __str__(self) -> str:
        prefix = f"[{self.provider}:{self.code}] " if self.code else f"[{self.provider}] "
        return prefix + self.message


class LLMTimeoutError(LLMError):
    def __init__(self, provider: LLMProvider | str, timeout: float):
        self.timeout = timeout
        super().__init__(f"LLM call timed out after {timeout:.0f}s", provider, "TIMEOUT")


class LLMAuthError(LLMError):
    def __init__(self, message: str, provider: LLMProvider | str):
        super().__init__(message, provider, "AUTH_ERROR")


class LLMRateLimitError(LLMError):
    def __init__(self, message: str, provider: LLMProvider | str):
        super().__init__(message, provider, "RATE_LIMIT")


# ---------------------------------------------------------------------------
# Request / response
# ---------------------------------------------------------------------------


class LLMRequest(BaseModel):
    prompt: str
    model: ModelSpec
    max_tokens: int | None = None
    temperature: float | None = None
    response_format: ResponseFormat = ResponseFormat.TEXT
    reasoning_effort: ReasoningEffort | None = None
    system_prompt: str | None = None


class LLMUsage(BaseModel):
    input_tokens: int = 0
    output_tokens: int = 0
    cached_input_tokens: int = 0


class LLMResponse(BaseModel):
    content: str
    tokens_used: int
    cost: float
    provider: LLMProvider
    provider_type: ProviderType
    model: str
    usage: LLMUsage = Field(default_factory=LLMUsage)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _build_model(spec: ModelSpec, api_key: str | None = None) -> Model:
    """Create an OpenAI-compatible model backed by OpenRouter."""
    try:
        key = api_key or get_api_key()
    except RuntimeError as exc:
        raise LLMError(str(exc), spec.provider, "NO_PLATFORM_KEY") from exc
    return OpenAIChatModel(
        openrouter_model_name(spec),
        provider=OpenRouterProvider(api_key=key),
    )


def _model_settings(request: LLMRequest) -> dict[str, Any]:
    settings: dict[str, Any] = {}
    if request.max_tokens is not None:
        settings["max_tokens"] = request.max_tokens
    if request.temperature is not None:
        settings["temperature"] = request.temperature
    if request.response_format == ResponseFormat.JSON:
        settings["extra_body"] = {"response_format": {"type": "json_object"}}
    if request.reasoning_effort not in (None, ReasoningEffort.AUTO):
        settings["openai_reasoning_effort"] = request.reasoning_effort.value
    return settings


def estimate_cost(spec: ModelSpec, usage: LLMUsage) -> float:
    """USD cost from per-1M prices. Cached input is billed at the cached price."""
    cached = min(usage.cached_input_tokens, usage.input_tokens)
    cached_price = (
        spec.cached_input_price_per_1m_usd
        if spec.cached_input_price_per_1m_usd is not None
        else spec.input_price_per_1m_usd
    )
    cost = (
        (usage.input_tokens - cached) * spec.input_price_per_1m_usd
        + cached * cached_price
        + usage.output_tokens * spec.output_price_per_1m_usd
    ) / 1_000_000
    return round(cost, 8)


def _classify_http_error(exc: ModelHTTPError, provider: LLMProvider) -> LLMError:
    message = f"{exc.model_name} returned HTTP {exc.status_code}"
    if exc.status_code in (401, 403):
        return LLMAuthError(message, provider)
    if exc.status_code == 429:
        return LLMRateLimitError(message, provider)
    return LLMError(message, provider, f"HTTP_{exc.status_code}")


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def call_llm(
    request: LLMRequest,
    *,
    scenario: ScenarioKey,
    role: Role = Role.PUBLIC,
    user_id: str | None = None,
    timeout: float | None = None,
    api_key: str | None = None,
    _model_override: Model | None = None,
) -> LLMResponse:
    """Send one prompt and return its text, usage and cost.

    Parameters
    ----------
    request:
        Prompt, model spec and generation settings.
    scenario, role, user_id:
        Attribution tag logged with every call.
    timeout:
        Seconds before the call is abandoned with ``LLMTimeoutError``.
        Defaults to ``get_llm_timeout()``.
    api_key:
        A user-supplied key. The call is then reported as ``byok``.
    _model_override:
        Inject a Pydantic-AI ``Model`` instance directly (used by tests to
        supply ``TestModel`` / ``FunctionModel`` without needing an API key).
    """
    provider = request.model.provider
    provider_type = ProviderType.BYOK if api_key else ProviderType.PLATFORM
    llm = _model_override or _build_model(request.model, api_key)
    limit = timeout if timeout is not None else get_llm_timeout()

    logger.debug(
        "LLM call: scenario=%s role=%s user=%s model=%s/%s prompt_len=%d max_tokens=%s",
        scenario.value,
        role.value,
        user_id or "-",
        provider.value,
        request.model.model_key,
        len(request.prompt),
        request.max_tokens,
    )

    agent: Agent[None, str] = Agent(
        llm,
        output_type=str,
        system_prompt=request.system_prompt or (),
    )
    try:
        result = await asyncio.wait_for(
            agent.run(request.prompt, model_settings=_model_settings(request)),  # type: ignore[arg-type]
            timeout=limit,
        )
    except LLMError:
        raise
    except asyncio.TimeoutError as exc:
        raise LLMTimeoutError(provider, limit) from exc
    except ModelHTTPError as exc:
        raise _classify_http_error(exc, provider) from exc
    except UnexpectedModelBehavior as exc:
        raise LLMError(str(exc), provider, "MALFORMED_RESPONSE") from exc
    except Exception as exc:
        raise LLMError(str(exc), provider, "LLM_ERROR") from exc

    run_usage = result.usage()
    usage = LLMUsage(
        input_tokens=run_usage.input_tokens or 0,
        output_tokens=run_usage.output_tokens or 0,
        cached_input_tokens=run_usage.cache_read_tokens or 0,
    )
    cost = estimate_cost(request.model, usage)
    logger.debug(
        "LLM done: scenario=%s tokens_in=%d tokens_out=%d cached=%d cost=%.6f",
        scenario.value,
        usage.input_tokens,
        usage.output_tokens,
        usage.cached_input_tokens,
        cost,
    )
    return LLMResponse(
        content=result.output,
        tokens_used=usage.input_tokens + usage.output_tokens,
        cost=cost,
        provider=provider,
        provider_type=provider_type,
        model=request.model.model_key,
        usage=usage,
    )


class UsageTotals:
    """Sums cost and tokens over the attempts of one orchestrator step."""

    def __init__(self) -> None:
        self.cost = 0.0
        self.tokens_used = 0
        self.input_tokens = 0
        self.output_tokens = 0
        self.cached_input_tokens = 0
        self.last: LLMResponse | None = None

    def add(self, response: LLMResponse) -> None:
        self.cost += response.cost
        self.tokens_used += response.tokens_used
        self.input_tokens += response.usage.input_tokens
        self.output_tokens += response.usage.output_tokens
        self.cached_input_tokens += response.usage.cached_input_tokens
        self.last = response

    def to_step_usage(self, attempts_used: int, fallback: ModelSpec | None = None) -> StepUsage:
        if self.last is not None:
            provider, provider_type, model = self.last.provider, self.last.provider_type, self.last.model
        elif fallback is not None:
            provider, provider_type, model = fallback.provider, ProviderType.PLATFORM, fallback.model_key
        else:
            raise ValueError("no response recorded and no fallback model given")
        return StepUsage(
            provider=provider,
            provider_type=provider_type,
            model=model,
            cost=round(self.cost, 8),
            tokens_used=self.tokens_used,
            input_tokens=self.input_tokens,
            output_tokens=self.output_tokens,
            cached_input_tokens=self.cached_input_tokens,
            attempts_used=attempts_used,
        )
