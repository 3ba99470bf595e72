from __future__ import annotations

import json
import sqlite3

import pytest

from tailorcv.core.database import upsert_scenario_default
from tailorcv.core.models import (
    DetailedEvidence,
    ProviderType,
    ResumeContent,
    RoutingAssignmentInput,
    ScenarioKey,
    SignalType,
    Vacancy,
)
from tailorcv.llm.engine import LLMAuthError, LLMError, LLMRateLimitError
from tailorcv.llm.shared_context import SHARED_CONTEXT_START
from tailorcv.scoring.breakdown import DETERMINISTIC_VERSION, resume_text
from tailorcv.scoring.score_details import (
    HEURISTIC_DEFAULT_TERMS,
    ScoreDetailsError,
    ScoreDetailsOptions,
    build_heuristic_details,
    build_recommendations,
    generate_score_details_with_llm,
    heuristic_signals,
    is_json_parse_like,
    parse_evidence_items,
    parse_extracted_signals,
    pick_heuristic_terms,
    should_fallback_to_heuristic,
)

# Cut off mid-list, as a token-limited response would be.
TRUNCATED_EXTRACT = (
    '{"signals": {"jobFamily": "engineering", "coreRequirements": '
    '[{"name": "Python", "weight": 0.9, "confidence": 0.9}], '
    '"mustHave": [{"name": "API economy", "weight": 0.85, "confidence": 0.8}'
)

EXTRACT_OK = json.dumps(
    {
        "signals": {
            "jobFamily": "engineering",
            "coreRequirements": [{"name": "Python", "weight": 0.9, "confidence": 0.9}],
            "mustHave": [{"name": "Kubernetes", "weight": 0.8, "confidence": 0.9}],
            "niceToHave": [{"name": "Terraform", "weight": 0.4, "confidence": 0.7}],
            "responsibilities": [],
        }
    }
)

MAP_OK = json.dumps(
    {
        "evidence": [
            {
                "signalType": "core",
                "signalName": "Python",
                "strengthBefore": 0.8,
                "strengthAfter": 0.9,
                "presentBefore": True,
                "presentAfter": True,
                "evidenceRefsAfter": ["summary", "skills"],
            },
            {
                "signalType": "mustHave",
                "signalName": "Kubernetes",
                "strengthBefore": 0.0,
                "strengthAfter": 0.7,
                "presentBefore": False,
                "presentAfter": True,
            },
            {
                "signalType": "niceToHave",
                "signalName": "Terraform",
                "strengthBefore": 0.0,
                "strengthAfter": 0.0,
                "presentBefore": False,
                "presentAfter": False,
            },
        ]
    }
)

MAP_API_ECONOMY = json.dumps(
    {
        "evidence": [
            {
                "signalType": "mustHave",
                "signalName": "API economy",
                "strengthBefore": 0.1,
                "strengthAfter": 0.8,
                "presentBefore": False,
                "presentAfter": True,
                "evidenceRefAfter": "summary",
            }
        ]
    }
)

GARBAGE = "I cannot produce that output."


class TestParsing:
    def test_signals_capped_and_sorted(self) -> None:
        items = [{"name": f"s{i}", "weight": i / 10} for i in range(9)]
        signals = parse_extracted_signals(json.dumps({"signals": {"mustHave": items}}))
        assert [s.name for s in signals.must_have] == ["s8", "s7", "s6", "s5", "s4", "s3"]

    def test_out_of_range_weight_is_validation_failure(self) -> None:
        raw = json.dumps({"signals": {"mustHave": [{"name": "Python", "weight": 4}]}})
        with pytest.raises(ScoreDetailsError) as exc_info:
            parse_extracted_signals(raw)
        assert exc_info.value.code == "VALIDATION_FAILED"

    def test_evidence_refs_compacted(self) -> None:
        raw = json.dumps(
            {
                "evidence": [
                    {
                        "signalType": "core",
                        "signalName": "Python",
                        "strengthBefore": 0.5,
                        "strengthAfter": 0.5,
                        "presentBefore": True,
                        "presentAfter": True,
                        "evidenceRefsBefore": ["a", " ", "b", "c", "d"],
                        "evidenceRefAfter": " skills ",
                    }
                ]
            }
        )
        [item] = parse_evidence_items(raw)
        assert item.refs_before == ["a", "b", "c"]
        assert item.refs_after == ["skills"]


class TestErrorPolicy:
    @pytest.mark.parametrize(
        "message",
        ["Failed to parse JSON: x", "Unexpected end of JSON input", "Unterminated string in JSON at position 9"],
    )
    def test_parse_like(self, message: str) -> None:
        assert is_json_parse_like(message)

    def test_not_parse_like(self) -> None:
        assert not is_json_parse_like("connection reset by peer")

    def test_invalid_json_falls_back(self) -> None:
        assert should_fallback_to_heuristic(ScoreDetailsError("bad", "INVALID_JSON"))

    def test_parse_code_falls_back_whatever_the_cause(self) -> None:
        cause = LLMRateLimitError("Invalid JSON body", "openai")
        assert should_fallback_to_heuristic(ScoreDetailsError("bad", "INVALID_JSON", cause))

    def test_non_recoverable_cause_blocks_llm_error_fallback(self) -> None:
        cause = LLMAuthError("Unexpected end of JSON input", "openai")
        error = ScoreDetailsError("LLM error: Unexpected end of JSON input", "LLM_ERROR", cause)
        assert not should_fallback_to_heuristic(error)

    def test_parse_like_llm_error_falls_back(self) -> None:
        error = ScoreDetailsError("LLM error: Unterminated string in JSON", "LLM_ERROR")
        assert should_fallback_to_heuristic(error)

    def test_plain_llm_error_does_not_fall_back(self) -> None:
        assert not should_fallback_to_heuristic(ScoreDetailsError("LLM error: boom", "LLM_ERROR"))
        assert not should_fallback_to_heuristic(None)


class TestHeuristic:
    def test_terms_by_frequency(self) -> None:
        assert pick_heuristic_terms("Kafka python kafka streams Python kafka")[:2] == ["kafka", "python"]

    def test_default_terms_when_empty(self) -> None:
        assert pick_heuristic_terms("we are the team") == HEURISTIC_DEFAULT_TERMS

    def test_weights_descend_within_group(self) -> None:
        signals = heuristic_signals("alpha beta gamma delta epsilon zeta")
        assert [s.weight for s in signals.must_have] == pytest.approx([0.85, 0.77, 0.69, 0.61])
        assert all(s.confidence == 0.6 for _, group in signals.by_type() for s in group)

    def test_present_terms_are_matched(
        self, base_resume: ResumeContent, tailored_resume: ResumeContent, vacancy: Vacancy
    ) -> None:
        details = build_heuristic_details(base_resume, tailored_resume, vacancy.description)
        after_text = resume_text(tailored_resume).lower()
        expected = {
            s.name
            for _, group in heuristic_signals(vacancy.description).by_type()
            for s in group
            if s.name.lower() in after_text
        }
        assert "kubernetes" in expected
        assert expected <= {m.signal for m in details.matched}
        assert details.score_breakdown.version == DETERMINISTIC_VERSION
        assert details.summary.after >= details.summary.before


class TestRecommendations:
    def _gap(self, name: str, present_after: bool) -> DetailedEvidence:
        return DetailedEvidence(
            signal_type=SignalType.MUST_HAVE,
            signal=name,
            weight=0.5,
            strength_before=0.0,
            strength_after=0.2,
            present_before=False,
            present_after=present_after,
        )

    def test_missing_and_weak(self) -> None:
        recommendations = build_recommendations([self._gap("Terraform", False), self._gap("Go", True)])
        assert recommendations[0].startswith('Add concise evidence for "Terraform"')
        assert recommendations[1].startswith('Strengthen "Go"')

    def test_no_gaps(self) -> None:
        assert build_recommendations([]) == [
            "Current tailored resume covers key signals well. Keep phrasing concise and specific."
        ]


class TestGenerateScoreDetails:
    async def test_success(
        self, scripted, base_resume: ResumeContent, tailored_resume: ResumeContent, vacancy: Vacancy
    ) -> None:
        model = scripted(EXTRACT_OK, MAP_OK)
        result = await generate_score_details_with_llm(
            base_resume, tailored_resume, vacancy, _model_override=model.model
        )
        assert model.calls == 2
        assert not result.fallback_used
        assert result.usage.attempts_used == 1
        assert result.details.score_breakdown.version == DETERMINISTIC_VERSION
        assert [m.signal for m in result.details.matched] == ["Python", "Kubernetes"]
        assert [g.signal for g in result.details.gaps] == ["Terraform"]
        assert result.details.matched[0].evidence_after == ["summary", "skills"]
        assert result.details.summary.after >= result.details.summary.before

    async def test_prompts_share_context(
        self, scripted, base_resume: ResumeContent, tailored_resume: ResumeContent, vacancy: Vacancy
    ) -> None:
        model = scripted(EXTRACT_OK, MAP_OK)
        await generate_score_details_with_llm(base_resume, tailored_resume, vacancy, _model_override=model.model)
        extract_prompt, map_prompt = model.prompts
        assert extract_prompt.startswith(SHARED_CONTEXT_START)
        assert map_prompt.startswith(SHARED_CONTEXT_START)
        assert "Signals:" in map_prompt
        assert "Tailored resume:" in map_prompt
        assert "Kubernetes" in map_prompt

    async def test_truncated_extract_is_repaired(
        self, scripted, base_resume: ResumeContent, tailored_resume: ResumeContent, vacancy: Vacancy
    ) -> None:
        model = scripted(TRUNCATED_EXTRACT, MAP_API_ECONOMY)
        result = await generate_score_details_with_llm(
            base_resume, tailored_resume, vacancy, _model_override=model.model
        )
        assert model.calls == 2
        assert not result.fallback_used
        assert result.usage.attempts_used == 1
        [matched] = result.details.matched
        assert matched.signal == "API economy"
        assert matched.weight == 0.85
        assert matched.evidence_after == ["summary"]

    async def test_parse_error_falls_back_to_heuristic(
        self, scripted, base_resume: ResumeContent, tailored_resume: ResumeContent, vacancy: Vacancy
    ) -> None:
        model = scripted(RuntimeError("Failed to parse JSON: Unexpected end of JSON input"))
        result = await generate_score_details_with_llm(
            base_resume, tailored_resume, vacancy, _model_override=model.model
        )
        assert model.calls == 1
        assert result.fallback_used
        assert result.details.score_breakdown.version == DETERMINISTIC_VERSION
        assert result.usage.attempts_used == 1
        assert result.usage.model == "gpt-4.1-mini"
        assert result.usage.provider_type == ProviderType.PLATFORM
        assert result.usage.cost == 0.0

    async def test_validation_failure_falls_back(
        self, scripted, base_resume: ResumeContent, tailored_resume: ResumeContent, vacancy: Vacancy
    ) -> None:
        bad = json.dumps({"signals": {"mustHave": [{"name": "Python", "weight": 4}]}})
        model = scripted(bad)
        result = await generate_score_details_with_llm(
            base_resume, tailored_resume, vacancy, _model_override=model.model
        )
        assert model.calls == 1
        assert result.fallback_used

    async def test_garbage_on_every_attempt(
        self, scripted, base_resume: ResumeContent, tailored_resume: ResumeContent, vacancy: Vacancy
    ) -> None:
        model = scripted(GARBAGE, EXTRACT_OK, GARBAGE)
        result = await generate_score_details_with_llm(
            base_resume,
            tailored_resume,
            vacancy,
            options=ScoreDetailsOptions(max_attempts=2),
            _model_override=model.model,
        )
        assert model.calls == 3
        assert result.fallback_used
        assert result.usage.attempts_used == 2

    async def test_attempts_capped(
        self, scripted, base_resume: ResumeContent, tailored_resume: ResumeContent, vacancy: Vacancy
    ) -> None:
        model = scripted(GARBAGE, GARBAGE, GARBAGE, GARBAGE)
        result = await generate_score_details_with_llm(
            base_resume,
            tailored_resume,
            vacancy,
            options=ScoreDetailsOptions(max_attempts=10),
            _model_override=model.model,
        )
        assert model.calls == 3
        assert result.usage.attempts_used == 3

    async def test_rate_limit_propagates(
        self, scripted, base_resume: ResumeContent, tailored_resume: ResumeContent, vacancy: Vacancy
    ) -> None:
        model = scripted(LLMRateLimitError("Too many requests", "openai"))
        with pytest.raises(ScoreDetailsError) as exc_info:
            await generate_score_details_with_llm(
                base_resume, tailored_resume, vacancy, _model_override=model.model
            )
        assert exc_info.value.code == "LLM_ERROR"
        assert isinstance(exc_info.value.cause, LLMError)
        assert exc_info.value.cause.code == "RATE_LIMIT"

    async def test_auth_error_with_parse_like_message_falls_back(
        self, scripted, base_resume: ResumeContent, tailored_resume: ResumeContent, vacancy: Vacancy
    ) -> None:
        model = scripted(LLMAuthError("Invalid JSON body", "openai"))
        result = await generate_score_details_with_llm(
            base_resume, tailored_resume, vacancy, _model_override=model.model
        )
        assert model.calls == 1
        assert result.fallback_used
        assert result.details.score_breakdown.version == DETERMINISTIC_VERSION

    async def test_existing_details_reused(
        self, scripted, base_resume: ResumeContent, tailored_resume: ResumeContent, vacancy: Vacancy
    ) -> None:
        existing = build_heuristic_details(base_resume, tailored_resume, vacancy.description)
        model = scripted()
        result = await generate_score_details_with_llm(
            base_resume, tailored_resume, vacancy, existing, _model_override=model.model
        )
        assert model.calls == 0
        assert result.reused
        assert result.details == existing
        assert result.usage.attempts_used == 0

    async def test_existing_details_regenerated_on_request(
        self, scripted, base_resume: ResumeContent, tailored_resume: ResumeContent, vacancy: Vacancy
    ) -> None:
        existing = build_heuristic_details(base_resume, tailored_resume, vacancy.description)
        model = scripted(EXTRACT_OK, MAP_OK)
        result = await generate_score_details_with_llm(
            base_resume,
            tailored_resume,
            vacancy,
            existing,
            options=ScoreDetailsOptions(reuse_existing=False),
            _model_override=model.model,
        )
        assert model.calls == 2
        assert not result.reused

    async def test_retry_model_used_on_second_attempt(
        self,
        db: sqlite3.Connection,
        add_model,
        scripted,
        base_resume: ResumeContent,
        tailored_resume: ResumeContent,
        vacancy: Vacancy,
    ) -> None:
        primary = add_model("gpt-4.1")
        retry = add_model("gpt-4.1-mini")
        upsert_scenario_default(
            db,
            ScenarioKey.RESUME_ADAPTATION_SCORING_DETAIL,
            RoutingAssignmentInput(model_id=primary.id, retry_model_id=retry.id),
        )
        model = scripted(GARBAGE, EXTRACT_OK, MAP_OK)
        result = await generate_score_details_with_llm(
            base_resume,
            tailored_resume,
            vacancy,
            conn=db,
            options=ScoreDetailsOptions(max_attempts=2),
            _model_override=model.model,
        )
        assert model.calls == 3
        assert not result.fallback_used
        assert result.usage.attempts_used == 2
        assert result.usage.model == "gpt-4.1-mini"
