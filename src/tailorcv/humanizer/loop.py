"""Critique/rewrite loop that polishes a generated cover letter.

Each round critiques the current text. The text is accepted once naturalness
reaches ``min_naturalness_score`` and AI-pattern risk stays within
``max_ai_risk_score``. Otherwise it is rewritten from the critic's issues and
fixes, up to ``max_rewrite_passes`` times. The loop is best effort: a failed
critique or rewrite returns the latest good text instead of raising.
"""

from __future__ import annotations

import logging
import sqlite3

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel
from pydantic_ai.models import Model

from tailorcv.core.models import (
    CoverLetterSettings,
    HumanizeResult,
    HumanizerConfig,
    ModelSpec,
    QualityEvaluation,
    ReasoningEffort,
    ResponseFormat,
    Role,
    ScenarioKey,
    StepUsage,
)
from tailorcv.humanizer.prompts import (
    COVER_LETTER_SYSTEM_PROMPT,
    CRITIC_MAX_TOKENS,
    CRITIC_TEMPERATURE,
    REWRITE_MAX_TOKENS,
    REWRITE_TEMPERATURE,
    build_critic_prompt,
    build_rewrite_prompt,
)
from tailorcv.llm.config import FALLBACK_MODEL
from tailorcv.llm.engine import LLMError, LLMRequest, UsageTotals, call_llm
from tailorcv.llm.json_repair import DecodeError, decode_json
from tailorcv.llm.routing import resolve_scenario_model
from tailorcv.scoring.breakdown import clamp_score

logger = logging.getLogger(__name__)


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class _CriticResponse(_CamelModel):
    naturalness_score: float
    ai_pattern_risk_score: float
    specificity_score: float = 0
    locale_fit_score: float = 0
    rewrite_recommended: bool = False
    issues: list[str] = Field(default_factory=list)
    targeted_fixes: list[str] = Field(default_factory=list)


class _RewriteResponse(_CamelModel):
    content_markdown: str = Field(min_length=1)
    subject_line: str | None = None


def parse_critique(raw: str) -> QualityEvaluation:
    parsed = _CriticResponse.model_validate(decode_json(raw))
    return QualityEvaluation(
        naturalness_score=clamp_score(parsed.naturalness_score),
        ai_pattern_risk_score=clamp_score(parsed.ai_pattern_risk_score),
        specificity_score=clamp_score(parsed.specificity_score),
        locale_fit_score=clamp_score(parsed.locale_fit_score),
        rewrite_recommended=parsed.rewrite_recommended,
        issues=[issue.strip() for issue in parsed.issues if issue.strip()],
        targeted_fixes=[fix.strip() for fix in parsed.targeted_fixes if fix.strip()],
    )


def meets_thresholds(quality: QualityEvaluation, config: HumanizerConfig) -> bool:
    return (
        quality.naturalness_score >= config.min_naturalness_score
        and quality.ai_pattern_risk_score <= config.max_ai_risk_score
    )


class _Humanizer:
    """One humanize run: routing, call plumbing and the debug switch."""

    def __init__(
        self,
        config: HumanizerConfig,
        *,
        role: Role,
        user_id: str | None,
        conn: sqlite3.Connection | None,
        timeout: float | None,
        api_key: str | None,
        model_override: Model | None,
    ):
        self.config = config
        self.role = role
        self.user_id = user_id
        self.timeout = timeout
        self.api_key = api_key
        self.model_override = model_override
        self.critic_model = self._route(conn, ScenarioKey.COVER_LETTER_HUMANIZER_CRITIC)
        self.rewrite_model = self._route(conn, ScenarioKey.COVER_LETTER_GENERATION)
        self.usage: list[StepUsage] = []

    def _route(self, conn: sqlite3.Connection | None, scenario: ScenarioKey) -> ModelSpec:
        route = resolve_scenario_model(conn, self.role, scenario) if conn is not None else None
        return route.primary if route else FALLBACK_MODEL

    def debug(self, message: str, *args: object) -> None:
        if self.config.debug_logs:
            logger.info(message, *args)

    async def _call(
        self,
        scenario: ScenarioKey,
        model: ModelSpec,
        prompt: str,
        temperature: float,
        max_tokens: int,
        reasoning_effort: ReasoningEffort | None = None,
    ) -> str:
        totals = UsageTotals()
        response = await call_llm(
            LLMRequest(
                prompt=prompt,
                model=model,
                max_tokens=max_tokens,
                temperature=temperature,
                response_format=ResponseFormat.JSON,
                reasoning_effort=reasoning_effort,
                system_prompt=COVER_LETTER_SYSTEM_PROMPT,
            ),
            scenario=scenario,
            role=self.role,
            user_id=self.user_id,
            timeout=self.timeout,
            api_key=self.api_key,
            _model_override=self.model_override,
        )
        totals.add(response)
        self.usage.append(totals.to_step_usage(1))
        return response.content

    async def critique(
        self, settings: CoverLetterSettings, content: str, subject_line: str | None
    ) -> QualityEvaluation:
        raw = await self._call(
            ScenarioKey.COVER_LETTER_HUMANIZER_CRITIC,
            self.critic_model,
            build_critic_prompt(settings, content, subject_line),
            CRITIC_TEMPERATURE,
            CRITIC_MAX_TOKENS,
            ReasoningEffort.LOW,
        )
        return parse_critique(raw)

    async def rewrite(
        self,
        settings: CoverLetterSettings,
        content: str,
        subject_line: str | None,
        quality: QualityEvaluation,
    ) -> tuple[str, str | None]:
        raw = await self._call(
            ScenarioKey.COVER_LETTER_GENERATION,
            self.rewrite_model,
            build_rewrite_prompt(settings, content, subject_line, quality.issues, quality.targeted_fixes),
            REWRITE_TEMPERATURE,
            REWRITE_MAX_TOKENS,
        )
        parsed = _RewriteResponse.model_validate(decode_json(raw))
        new_subject = parsed.subject_line.strip() if parsed.subject_line else None
        return parsed.content_markdown.strip(), new_subject or subject_line


async def humanize(
    content: str,
    subject_line: str | None,
    settings: CoverLetterSettings,
    config: HumanizerConfig,
    *,
    role: Role = Role.PUBLIC,
    user_id: str | None = None,
    conn: sqlite3.Connection | None = None,
    timeout: float | None = None,
    api_key: str | None = None,
    _model_override: Model | None = None,
) -> HumanizeResult:
    """Critique and rewrite *content* until it passes or runs out of passes.

    ``passes_used`` counts completed rewrites. ``accepted`` is True only when
    the final critique met both thresholds.
    """
    run = _Humanizer(
        config,
        role=role,
        user_id=user_id,
        conn=conn,
        timeout=timeout,
        api_key=api_key,
        model_override=_model_override,
    )
    passes = 0
    quality: QualityEvaluation | None = None

    def _result(accepted: bool) -> HumanizeResult:
        return HumanizeResult(
            content=content,
            subject_line=subject_line,
            passes_used=passes,
            accepted=accepted,
            quality=quality,
            usage=run.usage,
        )

    while True:
        try:
            quality = await run.critique(settings, content, subject_line)
        except (LLMError, DecodeError, ValidationError) as exc:
            logger.warning("Cover letter critique failed after %d rewrite(s), keeping text: %s", passes, exc)
            return _result(False)

        run.debug(
            "Humanizer critique pass=%d naturalness=%d ai_risk=%d specificity=%d locale_fit=%d issues=%d",
            passes,
            quality.naturalness_score,
            quality.ai_pattern_risk_score,
            quality.specificity_score,
            quality.locale_fit_score,
            len(quality.issues),
        )
        if meets_thresholds(quality, config):
            run.debug("Humanizer accepted text after %d rewrite(s)", passes)
            return _result(True)
        if passes >= config.max_rewrite_passes:
            run.debug("Humanizer rewrite budget (%d) spent, keeping best effort", config.max_rewrite_passes)
            return _result(False)

        try:
            content, subject_line = await run.rewrite(settings, content, subject_line, quality)
        except (LLMError, DecodeError, ValidationError) as exc:
            logger.warning("Cover letter rewrite failed on pass %d, keeping text: %s", passes + 1, exc)
            return _result(False)
        passes += 1
        # quality always describes the returned content
        quality = None
        run.debug("Humanizer rewrite pass=%d chars=%d", passes, len(content))
