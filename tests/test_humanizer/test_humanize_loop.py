from __future__ import annotations

import json
import logging
import sqlite3

import pytest

from tailorcv.core.database import upsert_scenario_default
from tailorcv.core.models import (
    CoverLetterSettings,
    HumanizerConfig,
    RoutingAssignmentInput,
    ScenarioKey,
)
from tailorcv.humanizer import humanize
from tailorcv.humanizer.loop import meets_thresholds, parse_critique
from tailorcv.humanizer.prompts import (
    COVER_LETTER_SYSTEM_PROMPT,
    FACT_PRESERVATION_RULE,
    build_critic_prompt,
    build_rewrite_prompt,
)

LETTER = "Dear team,\n\nI am excited to apply. I leverage synergies.\n\nBest,\nAlice"
REWRITTEN = "Dear team,\n\nI built payment APIs in Python at Acme Pay.\n\nBest,\nAlice"


def _critique(naturalness: int, risk: int, issues: list[str] | None = None, fixes: list[str] | None = None) -> str:
    return json.dumps(
        {
            "naturalnessScore": naturalness,
            "aiPatternRiskScore": risk,
            "specificityScore": 60,
            "localeFitScore": 80,
            "rewriteRecommended": naturalness < 75,
            "issues": issues or [],
            "targetedFixes": fixes or [],
        }
    )


def _rewrite(content: str, subject: str | None = None) -> str:
    return json.dumps({"contentMarkdown": content, "subjectLine": subject})


@pytest.fixture
def settings() -> CoverLetterSettings:
    return CoverLetterSettings(language="en", market="dk")


@pytest.fixture
def config() -> HumanizerConfig:
    return HumanizerConfig()


class TestParseCritique:
    def test_scores_clamped_and_issues_trimmed(self) -> None:
        raw = json.dumps({"naturalnessScore": 130.2, "aiPatternRiskScore": -4, "issues": [" a ", ""]})
        quality = parse_critique(raw)
        assert quality.naturalness_score == 100
        assert quality.ai_pattern_risk_score == 0
        assert quality.issues == ["a"]

    def test_thresholds_inclusive(self, config: HumanizerConfig) -> None:
        assert meets_thresholds(parse_critique(_critique(75, 35)), config)
        assert not meets_thresholds(parse_critique(_critique(74, 35)), config)
        assert not meets_thresholds(parse_critique(_critique(90, 36)), config)


class TestPrompts:
    def test_critic_prompt(self, settings: CoverLetterSettings) -> None:
        prompt = build_critic_prompt(settings, LETTER, None)
        assert "- Market: dk" in prompt
        assert "Subject line:\n(none)" in prompt
        assert prompt.endswith(LETTER)

    def test_rewrite_prompt_lists(self, settings: CoverLetterSettings) -> None:
        prompt = build_rewrite_prompt(settings, LETTER, "Application", ["Generic opener"], [])
        assert "1. Generic opener" in prompt
        assert "Targeted fixes to apply:\n(none)" in prompt
        assert FACT_PRESERVATION_RULE in prompt


class TestHumanize:
    async def test_accepted_on_first_critique(
        self, scripted, settings: CoverLetterSettings, config: HumanizerConfig
    ) -> None:
        model = scripted(_critique(88, 12))
        result = await humanize(LETTER, "Application", settings, config, _model_override=model.model)
        assert model.calls == 1
        assert result.accepted
        assert result.passes_used == 0
        assert result.content == LETTER
        assert result.quality.naturalness_score == 88

    async def test_rewrite_then_accept(
        self, scripted, settings: CoverLetterSettings, config: HumanizerConfig
    ) -> None:
        model = scripted(
            _critique(60, 50, ["Buzzword: synergies"], ["Name a concrete project"]),
            _rewrite(REWRITTEN),
            _critique(85, 20),
        )
        result = await humanize(LETTER, "Application", settings, config, _model_override=model.model)

        assert result.accepted
        assert result.passes_used == 1
        assert result.content == REWRITTEN
        assert result.subject_line == "Application"
        assert len(result.usage) == 3
        rewrite_prompt = model.prompts[1]
        assert FACT_PRESERVATION_RULE in rewrite_prompt
        assert "1. Buzzword: synergies" in rewrite_prompt
        assert "1. Name a concrete project" in rewrite_prompt
        assert model.prompts[2].endswith(REWRITTEN)

    async def test_rewrite_replaces_subject(
        self, scripted, settings: CoverLetterSettings, config: HumanizerConfig
    ) -> None:
        model = scripted(_critique(60, 50), _rewrite(REWRITTEN, "Backend engineer application"), _critique(85, 20))
        result = await humanize(LETTER, "Application", settings, config, _model_override=model.model)
        assert result.subject_line == "Backend engineer application"

    async def test_budget_spent(self, scripted, settings: CoverLetterSettings) -> None:
        model = scripted(_critique(60, 50), _rewrite(REWRITTEN), _critique(70, 40))
        result = await humanize(LETTER, None, settings, HumanizerConfig(), _model_override=model.model)
        assert model.calls == 3
        assert not result.accepted
        assert result.passes_used == 1
        assert result.content == REWRITTEN

    async def test_no_rewrite_passes(self, scripted, settings: CoverLetterSettings) -> None:
        model = scripted(_critique(40, 80))
        result = await humanize(
            LETTER, None, settings, HumanizerConfig(max_rewrite_passes=0), _model_override=model.model
        )
        assert model.calls == 1
        assert not result.accepted
        assert result.passes_used == 0
        assert result.quality.ai_pattern_risk_score == 80

    async def test_critique_failure_keeps_text(
        self, scripted, settings: CoverLetterSettings, config: HumanizerConfig
    ) -> None:
        model = scripted("not a critique")
        result = await humanize(LETTER, None, settings, config, _model_override=model.model)
        assert not result.accepted
        assert result.content == LETTER
        assert result.quality is None

    async def test_critique_llm_error_keeps_text(
        self, scripted, settings: CoverLetterSettings, config: HumanizerConfig
    ) -> None:
        model = scripted(RuntimeError("upstream unavailable"))
        result = await humanize(LETTER, None, settings, config, _model_override=model.model)
        assert not result.accepted
        assert result.content == LETTER

    async def test_rewrite_failure_keeps_text(
        self, scripted, settings: CoverLetterSettings, config: HumanizerConfig
    ) -> None:
        model = scripted(_critique(60, 50), _rewrite(""))
        result = await humanize(LETTER, None, settings, config, _model_override=model.model)
        assert not result.accepted
        assert result.passes_used == 0
        assert result.content == LETTER
        assert result.quality.naturalness_score == 60

    async def test_failed_recritique_drops_stale_quality(
        self, scripted, settings: CoverLetterSettings, config: HumanizerConfig
    ) -> None:
        model = scripted(_critique(60, 50), _rewrite(REWRITTEN), RuntimeError("upstream unavailable"))
        result = await humanize(LETTER, None, settings, config, _model_override=model.model)
        assert not result.accepted
        assert result.passes_used == 1
        assert result.content == REWRITTEN
        assert result.quality is None

    async def test_system_prompt_and_critic_reasoning(
        self, scripted, settings: CoverLetterSettings, config: HumanizerConfig
    ) -> None:
        model = scripted(_critique(60, 50), _rewrite(REWRITTEN), _critique(85, 20))
        await humanize(LETTER, None, settings, config, _model_override=model.model)

        assert model.system_prompts == [COVER_LETTER_SYSTEM_PROMPT] * 3
        critic, rewrite, _ = model.settings
        assert critic["openai_reasoning_effort"] == "low"
        assert critic["max_tokens"] == 600
        assert "openai_reasoning_effort" not in rewrite

    async def test_debug_logs_switch(
        self, scripted, settings: CoverLetterSettings, caplog: pytest.LogCaptureFixture
    ) -> None:
        caplog.set_level(logging.INFO, logger="tailorcv.humanizer.loop")

        quiet = scripted(_critique(88, 12))
        await humanize(LETTER, None, settings, HumanizerConfig(debug_logs=False), _model_override=quiet.model)
        assert not [r for r in caplog.records if r.name == "tailorcv.humanizer.loop"]

        loud = scripted(_critique(88, 12))
        await humanize(LETTER, None, settings, HumanizerConfig(debug_logs=True), _model_override=loud.model)
        messages = [r.getMessage() for r in caplog.records if r.name == "tailorcv.humanizer.loop"]
        assert any(m.startswith("Humanizer critique pass=0") for m in messages)

    async def test_routed_rewrite_model(
        self, db: sqlite3.Connection, add_model, scripted, settings: CoverLetterSettings, config: HumanizerConfig
    ) -> None:
        writer = add_model("gpt-4.1")
        upsert_scenario_default(db, ScenarioKey.COVER_LETTER_GENERATION, RoutingAssignmentInput(model_id=writer.id))
        model = scripted(_critique(60, 50), _rewrite(REWRITTEN), _critique(85, 20))
        result = await humanize(LETTER, None, settings, config, conn=db, _model_override=model.model)

        # the critic scenario ships disabled, so it runs on the fallback model
        assert [u.model for u in result.usage] == ["gpt-4.1-mini", "gpt-4.1", "gpt-4.1-mini"]
