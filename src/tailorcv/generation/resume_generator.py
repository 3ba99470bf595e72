"""Resume generation: adapt the base resume to a vacancy, then score the match.

Flow is ADAPT -> SCORE -> DONE. A failed adaptation aborts with
``GenerationError``. A failed scoring step never does: it drops to the
keyword-overlap fallback (``fallback-keyword-v1``) and marks the result with
``scoring_fallback_used``.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError
from pydantic_ai.models import Model

from tailorcv.core.models import (
    CandidateProfile,
    GenerationResult,
    MatchScores,
    ModelSpec,
    ReasoningEffort,
    ResolvedRoute,
    ResponseFormat,
    ResumeContent,
    Role,
    ScenarioKey,
    ScoreBreakdown,
    StepUsage,
    StrategyKey,
    Vacancy,
)
from tailorcv.generation.prompts import (
    ADAPTATION_MAX_RETRIES,
    ADAPTATION_MAX_TOKENS,
    ADAPTATION_TEMPERATURE,
    SCORING_MAX_RETRIES,
    SCORING_MAX_TOKENS,
    SCORING_TEMPERATURE,
    build_adaptation_prompt,
    build_baseline_score_prompt,
)
from tailorcv.llm.config import FALLBACK_MODEL
from tailorcv.llm.engine import LLMError, LLMRequest, UsageTotals, call_llm
from tailorcv.llm.json_repair import DecodeError, decode_json
from tailorcv.llm.routing import resolve_scenario_model
from tailorcv.llm.shared_context import SHARED_SYSTEM_PROMPT, build_shared_context
from tailorcv.scoring.breakdown import LLM_BASELINE_VERSION, normalize_scores, uniform_breakdown
from tailorcv.scoring.keyword_fallback import keyword_fallback_scores

logger = logging.getLogger(__name__)


class GenerationError(Exception):
    """Adaptation failed; the generation cannot produce a resume."""

    def __init__(self, message: str, code: str, cause: Exception | None = None):
        self.code = code
        self.cause = cause
        super().__init__(message)


@dataclass
class GenerateOptions:
    max_retries: int = ADAPTATION_MAX_RETRIES
    scoring_max_retries: int = SCORING_MAX_RETRIES
    temperature: float | None = None
    scoring_temperature: float | None = None
    timeout: float | None = None
    api_key: str | None = None


@dataclass
class _Step:
    """Settings for one orchestrated LLM step."""

    scenario: ScenarioKey
    primary: ModelSpec
    retry: ModelSpec | None
    temperature: float
    max_tokens: int
    reasoning_effort: ReasoningEffort | None


def _resolve(
    conn: sqlite3.Connection | None, role: Role, scenario: ScenarioKey
) -> ResolvedRoute | None:
    if conn is None:
        return None
    return resolve_scenario_model(conn, role, scenario)


def _as_generation_error(exc: Exception) -> GenerationError:
    if isinstance(exc, GenerationError):
        return exc
    if isinstance(exc, LLMError):
        return GenerationError(f"LLM error: {exc.message}", "LLM_ERROR", exc)
    if isinstance(exc, DecodeError):
        return GenerationError(str(exc), "INVALID_JSON", exc)
    return GenerationError(f"Validation failed: {exc}", "VALIDATION_FAILED", exc)


# ---------------------------------------------------------------------------
# Response parsing
# ---------------------------------------------------------------------------


def parse_adaptation_content(raw: str) -> ResumeContent:
    payload = decode_json(raw)
    if not isinstance(payload, dict) or not isinstance(payload.get("content"), dict):
        raise GenerationError('Adaptation response has no "content" object', "VALIDATION_FAILED")
    try:
        return ResumeContent.model_validate(payload["content"])
    except ValidationError as exc:
        raise GenerationError(f"Adapted resume failed validation: {exc}", "VALIDATION_FAILED", exc) from exc


def _score_value(payload: dict[str, Any], key: str) -> float:
    value = payload.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise GenerationError(f"Scoring response field {key!r} is not a number", "VALIDATION_FAILED")
    return float(value)


def parse_baseline_scores(raw: str) -> MatchScores:
    payload = decode_json(raw)
    if not isinstance(payload, dict):
        raise GenerationError("Scoring response is not a JSON object", "VALIDATION_FAILED")
    return normalize_scores(
        _score_value(payload, "matchScoreBefore"),
        _score_value(payload, "matchScoreAfter"),
    )


# ---------------------------------------------------------------------------
# Steps
# ---------------------------------------------------------------------------


async def _run_step(
    step: _Step,
    prompt: str,
    parse: Any,
    max_attempts: int,
    *,
    role: Role,
    user_id: str | None,
    options: GenerateOptions,
    _model_override: Model | None,
) -> tuple[Any, StepUsage]:
    """Call, decode and validate with up to *max_attempts* tries.

    Attempts after the first use the retry model when one is routed.
    """
    totals = UsageTotals()
    last_error: GenerationError | None = None

    for attempt in range(1, max_attempts + 1):
        spec = step.retry if attempt > 1 and step.retry else step.primary
        request = LLMRequest(
            prompt=prompt,
            model=spec,
            max_tokens=step.max_tokens,
            temperature=step.temperature,
            response_format=ResponseFormat.JSON,
            reasoning_effort=ReasoningEffort.MEDIUM if attempt > 1 else step.reasoning_effort,
            system_prompt=SHARED_SYSTEM_PROMPT,
        )
        try:
            response = await call_llm(
                request,
                scenario=step.scenario,
                role=role,
                user_id=user_id,
                timeout=options.timeout,
                api_key=options.api_key,
                _model_override=_model_override,
            )
            totals.add(response)
            parsed = parse(response.content)
        except (LLMError, DecodeError, GenerationError) as exc:
            last_error = _as_generation_error(exc)
            logger.debug(
                "%s attempt %d/%d failed: %s",
                step.scenario.value,
                attempt,
                max_attempts,
                last_error,
            )
            continue
        return parsed, totals.to_step_usage(attempt)

    raise last_error or GenerationError(
        f"{step.scenario.value} failed after {max_attempts} attempts", "MAX_RETRIES_EXCEEDED"
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def generate_resume_with_llm(
    base_resume: ResumeContent,
    vacancy: Vacancy,
    existing_generation: GenerationResult | None = None,
    *,
    role: Role = Role.PUBLIC,
    user_id: str | None = None,
    conn: sqlite3.Connection | None = None,
    profile: CandidateProfile | None = None,
    options: GenerateOptions | None = None,
    _model_override: Model | None = None,
) -> GenerationResult:
    """Tailor *base_resume* to *vacancy* and score the result.

    Parameters
    ----------
    existing_generation:
        A previous result for the same vacancy; its content is given to the
        model as the version to improve on.
    conn:
        Catalog connection used for routing. ``None`` skips routing and uses
        ``FALLBACK_MODEL``.
    _model_override:
        Pydantic-AI model injected for every call (tests).

    Raises ``GenerationError`` when adaptation fails on every attempt.
    """
    options = options or GenerateOptions()

    adaptation_route = _resolve(conn, role, ScenarioKey.RESUME_ADAPTATION)
    if adaptation_route is None:
        logger.debug("Adaptation unresolved for role=%s, using fallback model", role.value)
    strategy_key = (
        adaptation_route.strategy_key
        if adaptation_route and adaptation_route.strategy_key
        else StrategyKey.ECONOMY
    )

    shared = build_shared_context(base_resume, vacancy, profile)

    adaptation_step = _Step(
        scenario=ScenarioKey.RESUME_ADAPTATION,
        primary=adaptation_route.primary if adaptation_route else FALLBACK_MODEL,
        retry=adaptation_route.retry if adaptation_route else None,
        temperature=_first_set(
            options.temperature,
            adaptation_route.temperature if adaptation_route else None,
            ADAPTATION_TEMPERATURE,
        ),
        max_tokens=(adaptation_route.max_tokens if adaptation_route else None) or ADAPTATION_MAX_TOKENS,
        reasoning_effort=adaptation_route.reasoning_effort if adaptation_route else None,
    )
    previous = existing_generation.content if existing_generation else None
    content, adaptation_usage = await _run_step(
        adaptation_step,
        build_adaptation_prompt(shared.prompt, strategy_key, previous),
        parse_adaptation_content,
        max(1, options.max_retries),
        role=role,
        user_id=user_id,
        options=options,
        _model_override=_model_override,
    )

    scoring_route = _resolve(conn, role, ScenarioKey.RESUME_ADAPTATION_SCORING)
    scoring_step = _Step(
        scenario=ScenarioKey.RESUME_ADAPTATION_SCORING,
        primary=scoring_route.primary if scoring_route else adaptation_step.primary,
        retry=None,
        temperature=_first_set(
            options.scoring_temperature,
            scoring_route.temperature if scoring_route else None,
            SCORING_TEMPERATURE,
        ),
        max_tokens=(scoring_route.max_tokens if scoring_route else None) or SCORING_MAX_TOKENS,
        reasoning_effort=ReasoningEffort.LOW,
    )

    scoring_usage: StepUsage | None
    breakdown: ScoreBreakdown
    try:
        scores, scoring_usage = await _run_step(
            scoring_step,
            build_baseline_score_prompt(shared.prompt, content),
            parse_baseline_scores,
            max(1, min(options.scoring_max_retries, SCORING_MAX_RETRIES)),
            role=role,
            user_id=user_id,
            options=options,
            _model_override=_model_override,
        )
        breakdown = uniform_breakdown(scores, LLM_BASELINE_VERSION)
        fallback_used = False
    except GenerationError as exc:
        logger.warning(
            "Baseline scoring failed, using keyword fallback (shared context ~%d tokens): %s",
            shared.cache_token_estimate,
            exc,
        )
        scores, breakdown = keyword_fallback_scores(base_resume, content, vacancy.description)
        scoring_usage = None
        fallback_used = True

    return GenerationResult(
        content=content,
        match_score_before=scores.match_score_before,
        match_score_after=scores.match_score_after,
        score_breakdown=breakdown,
        strategy_key=strategy_key,
        adaptation=adaptation_usage,
        scoring=scoring_usage,
        scoring_fallback_used=fallback_used,
        shared_context_token_estimate=shared.cache_token_estimate,
    )


def _first_set(*values: float | None) -> float:
    for value in values:
        if value is not None:
            return value
    raise ValueError("no value set")
