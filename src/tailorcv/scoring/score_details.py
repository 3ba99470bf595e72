"""Detailed match scoring: vacancy signals mapped to resume evidence.

Each attempt makes two sequential calls: extract weighted vacancy signals,
then map before/after resume evidence for those signals. The composite
scores come from ``compute_deterministic_scores`` (``deterministic-v1``).

Signal extraction often truncates under its token budget, so both responses
go through ``decode_json``'s repair path. When the attempt budget runs out on
a parse-like failure, a lexical heuristic produces the details instead.
Provider failures that are not parse-related (auth, rate limit, quota,
budgets) propagate as ``ScoreDetailsError``.
"""

from __future__ import annotations

import json
import logging
import re
import sqlite3
from collections import Counter
from dataclasses import dataclass

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel
from pydantic_ai.models import Model

from tailorcv.core.models import (
    CandidateProfile,
    DetailedEvidence,
    MatchScores,
    ModelSpec,
    ResolvedRoute,
    ResponseFormat,
    ResumeContent,
    Role,
    ScenarioKey,
    ScoreBreakdown,
    ScoreDetails,
    ScoreDetailsResult,
    ScoreSummary,
    SignalType,
    Vacancy,
)
from tailorcv.llm.config import FALLBACK_MODEL
from tailorcv.llm.engine import LLMError, LLMRequest, UsageTotals, call_llm
from tailorcv.llm.json_repair import DecodeError, decode_json
from tailorcv.llm.routing import resolve_scenario_model
from tailorcv.llm.shared_context import SHARED_SYSTEM_PROMPT, build_shared_context, wrap_shared_context
from tailorcv.scoring.breakdown import (
    EvidenceItem,
    clamp_score,
    clamp_unit,
    compute_deterministic_scores,
    resume_text,
)

logger = logging.getLogger(__name__)

EXTRACT_MAX_TOKENS = 2200
MAP_MAX_TOKENS = 2200
RETRY_TOKEN_GROWTH = 1.5
DEFAULT_MAX_ATTEMPTS = 1
MAX_ATTEMPTS_CAP = 3

MAX_SIGNAL_ITEMS = 6
MAX_EVIDENCE_ITEMS = 20
MAX_REF_ITEMS = 3
MAX_LISTED_ITEMS = 16
MAX_RECOMMENDATIONS = 6
MATCH_STRENGTH_THRESHOLD = 0.45
DEFAULT_SIGNAL_WEIGHT = 0.1

HEURISTIC_TERMS_LIMIT = 12
HEURISTIC_PRESENT_STRENGTH = 0.65
HEURISTIC_CONFIDENCE = 0.6
HEURISTIC_DEFAULT_TERMS = ["api", "architecture", "leadership", "coaching", "collaboration", "automation"]
HEURISTIC_STOPWORDS = frozenset(
    """
    about ability able across activity advanced after agile all also and any are around as at
    be because being best both bring building business but by can chance children colleague
    colleagues collaboration committed communication community company condition connected
    contributor core craft culture customer customers days delivery design different does during
    each employment encourage engineering ensuring experience external field for from fun get
    global group have help helping here how ideal if in including innovation insight insurance
    interconnected internal into is it join key know leadership learning left life means more
    new no note of offer offers on one ongoing only opportunities or our part partner people
    personalised phenomenal play please position possible prepare primary process products
    providing reviewed right role scheme secure seeking services should skills so solutions some
    soon strategy support technology team teams than that the their them then through times to
    tools trust up us user users verbal we what when where which with within work would you your
    """.split()
)
_HEURISTIC_WORD = re.compile(r"[a-z][a-z0-9+#.-]{2,}")

JSON_PARSE_ERROR_PATTERN = re.compile(
    r"failed to parse json|unexpected end of json input|unterminated|string in json|invalid json",
    re.IGNORECASE,
)
NON_RECOVERABLE_LLM_CODES = frozenset(
    {
        "AUTH_ERROR",
        "NO_PLATFORM_KEY",
        "PLATFORM_DISABLED",
        "ROLE_BUDGET_DISABLED",
        "DAILY_BUDGET_EXCEEDED",
        "WEEKLY_BUDGET_EXCEEDED",
        "MONTHLY_BUDGET_EXCEEDED",
        "GLOBAL_BUDGET_EXCEEDED",
        "RATE_LIMIT",
        "QUOTA_EXCEEDED",
    }
)
_FALLBACK_CODES = frozenset({"INVALID_JSON", "VALIDATION_FAILED", "MAX_RETRIES_EXCEEDED"})

EXTRACT_SIGNALS_INSTRUCTIONS = """\
Task:
Extract structured vacancy signals as JSON.

Output JSON schema:
{
  "signals": {
    "jobFamily": string,
    "seniority": string | null,
    "coreRequirements": [{ "name": string, "weight": number, "confidence": number }],
    "mustHave": [{ "name": string, "weight": number, "confidence": number }],
    "niceToHave": [{ "name": string, "weight": number, "confidence": number }],
    "responsibilities": [{ "name": string, "weight": number, "confidence": number }],
    "domainTerms": string[],
    "constraints": string[]
  }
}

Rules:
- weights and confidence must be within 0..1
- keep output domain-agnostic (not IT-only)
- return valid JSON only"""

MAP_EVIDENCE_INSTRUCTIONS = """\
Task:
Map vacancy signals to resume evidence for both original and tailored resume.

Output JSON schema:
{
  "evidence": [
    {
      "signalType": "core" | "mustHave" | "niceToHave" | "responsibility",
      "signalName": string,
      "strengthBefore": number,
      "strengthAfter": number,
      "presentBefore": boolean,
      "presentAfter": boolean,
      "evidenceRefsBefore": string[],
      "evidenceRefsAfter": string[]
    }
  ]
}

Rules:
- strengths must be within 0..1
- evidenceRefs should reference sections or bullets in plain text paths
- no narrative text, JSON only"""


class ScoreDetailsError(Exception):
    def __init__(self, message: str, code: str, cause: Exception | None = None):
        self.code = code
        self.cause = cause
        super().__init__(message)


@dataclass
class ScoreDetailsOptions:
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    temperature: float | None = None
    timeout: float | None = None
    api_key: str | None = None
    reuse_existing: bool = True


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)


class WeightedSignal(_CamelModel):
    name: str = Field(min_length=1)
    weight: float = Field(ge=0, le=1)
    confidence: float = Field(default=1.0, ge=0, le=1)


class ExtractedSignals(_CamelModel):
    core_requirements: list[WeightedSignal] = Field(default_factory=list)
    must_have: list[WeightedSignal] = Field(default_factory=list)
    nice_to_have: list[WeightedSignal] = Field(default_factory=list)
    responsibilities: list[WeightedSignal] = Field(default_factory=list)

    def by_type(self) -> list[tuple[SignalType, list[WeightedSignal]]]:
        return [
            (SignalType.CORE, self.core_requirements),
            (SignalType.MUST_HAVE, self.must_have),
            (SignalType.NICE_TO_HAVE, self.nice_to_have),
            (SignalType.RESPONSIBILITY, self.responsibilities),
        ]


class _ExtractResponse(_CamelModel):
    signals: ExtractedSignals


class _EvidenceEntry(_CamelModel):
    signal_type: SignalType
    signal_name: str = Field(min_length=1)
    strength_before: float = Field(ge=0, le=1)
    strength_after: float = Field(ge=0, le=1)
    present_before: bool
    present_after: bool
    evidence_ref_before: str | None = None
    evidence_ref_after: str | None = None
    evidence_refs_before: list[str] | None = None
    evidence_refs_after: list[str] | None = None


class _EvidenceResponse(_CamelModel):
    evidence: list[_EvidenceEntry]


def _compact_refs(refs: list[str] | None, single: str | None) -> list[str]:
    compact = [ref.strip() for ref in refs or [] if ref.strip()][:MAX_REF_ITEMS]
    if compact:
        return compact
    if single and single.strip():
        return [single.strip()]
    return []


def _top_signals(items: list[WeightedSignal]) -> list[WeightedSignal]:
    return sorted(items, key=lambda item: item.weight, reverse=True)[:MAX_SIGNAL_ITEMS]


def parse_extracted_signals(raw: str) -> ExtractedSignals:
    try:
        signals = _ExtractResponse.model_validate(decode_json(raw)).signals
    except ValidationError as exc:
        raise ScoreDetailsError(f"Validation failed: {exc}", "VALIDATION_FAILED", exc) from exc
    return ExtractedSignals(
        core_requirements=_top_signals(signals.core_requirements),
        must_have=_top_signals(signals.must_have),
        nice_to_have=_top_signals(signals.nice_to_have),
        responsibilities=_top_signals(signals.responsibilities),
    )


def parse_evidence_items(raw: str) -> list[EvidenceItem]:
    try:
        entries = _EvidenceResponse.model_validate(decode_json(raw)).evidence
    except ValidationError as exc:
        raise ScoreDetailsError(f"Validation failed: {exc}", "VALIDATION_FAILED", exc) from exc
    return [
        EvidenceItem(
            signal_type=entry.signal_type,
            signal_name=entry.signal_name,
            strength_before=entry.strength_before,
            strength_after=entry.strength_after,
            present_before=entry.present_before,
            present_after=entry.present_after,
            refs_before=_compact_refs(entry.evidence_refs_before, entry.evidence_ref_before),
            refs_after=_compact_refs(entry.evidence_refs_after, entry.evidence_ref_after),
        )
        for entry in entries[:MAX_EVIDENCE_ITEMS]
    ]


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------


def build_extract_signals_prompt(shared_context: str) -> str:
    return f"{wrap_shared_context(shared_context)}\n\n{EXTRACT_SIGNALS_INSTRUCTIONS}"


def build_map_evidence_prompt(
    shared_context: str, tailored_resume: ResumeContent, signals: ExtractedSignals
) -> str:
    return (
        f"{wrap_shared_context(shared_context)}\n\n{MAP_EVIDENCE_INSTRUCTIONS}\n\n"
        f"Signals:\n{json.dumps(signals.model_dump(by_alias=True), indent=2, ensure_ascii=False)}\n\n"
        f"Tailored resume:\n{json.dumps(tailored_resume.to_prompt_dict(), indent=2, ensure_ascii=False)}"
    )


# ---------------------------------------------------------------------------
# Details payload
# ---------------------------------------------------------------------------


def _weight_key(signal_type: SignalType, name: str) -> str:
    return f"{signal_type.value}:{name.lower()}"


def _to_detailed(item: EvidenceItem, weights: dict[str, float]) -> DetailedEvidence:
    return DetailedEvidence(
        signal_type=item.signal_type,
        signal=item.signal_name,
        weight=weights.get(_weight_key(item.signal_type, item.signal_name), DEFAULT_SIGNAL_WEIGHT),
        strength_before=item.strength_before,
        strength_after=item.strength_after,
        present_before=item.present_before,
        present_after=item.present_after,
        evidence_before=item.refs_before,
        evidence_after=item.refs_after,
    )


def build_recommendations(gaps: list[DetailedEvidence]) -> list[str]:
    recommendations = [
        f'Add concise evidence for "{item.signal}" in the most relevant experience section.'
        if not item.present_after
        else f'Strengthen "{item.signal}" with clearer impact and context in existing bullets.'
        for item in gaps[:MAX_RECOMMENDATIONS]
    ]
    return recommendations or [
        "Current tailored resume covers key signals well. Keep phrasing concise and specific."
    ]


def build_details(
    scores: MatchScores,
    breakdown: ScoreBreakdown,
    signals: ExtractedSignals,
    evidence: list[EvidenceItem],
) -> ScoreDetails:
    weights = {
        _weight_key(signal_type, item.name): item.weight
        for signal_type, items in signals.by_type()
        for item in items
    }
    detailed = [_to_detailed(item, weights) for item in evidence]

    matched = sorted(
        (d for d in detailed if d.present_after and d.strength_after >= MATCH_STRENGTH_THRESHOLD),
        key=lambda d: d.weight * d.strength_after,
        reverse=True,
    )[:MAX_LISTED_ITEMS]
    gaps = sorted(
        (d for d in detailed if not d.present_after or d.strength_after < MATCH_STRENGTH_THRESHOLD),
        key=lambda d: d.weight,
        reverse=True,
    )[:MAX_LISTED_ITEMS]

    before, after = scores.match_score_before, scores.match_score_after
    return ScoreDetails(
        summary=ScoreSummary(
            before=clamp_score(before),
            after=clamp_score(max(after, before)),
            improvement=clamp_score(max(after - before, 0)),
        ),
        matched=matched,
        gaps=gaps,
        recommendations=build_recommendations(gaps),
        score_breakdown=breakdown,
    )


# ---------------------------------------------------------------------------
# Heuristic fallback
# ---------------------------------------------------------------------------


def pick_heuristic_terms(description: str) -> list[str]:
    """Most frequent non-stopword vacancy terms, ties kept in first-seen order."""
    counts = Counter(
        word for word in _HEURISTIC_WORD.findall(description.lower()) if word not in HEURISTIC_STOPWORDS
    )
    ranked = [word for word, _ in counts.most_common(HEURISTIC_TERMS_LIMIT)]
    return ranked or list(HEURISTIC_DEFAULT_TERMS)


def _weighted(terms: list[str], start: int, end: int, base_weight: float) -> list[WeightedSignal]:
    return [
        WeightedSignal(
            name=name,
            weight=clamp_unit(base_weight - index * 0.08),
            confidence=HEURISTIC_CONFIDENCE,
        )
        for index, name in enumerate(terms[start:end])
    ]


def heuristic_signals(description: str) -> ExtractedSignals:
    terms = pick_heuristic_terms(description)
    return ExtractedSignals(
        core_requirements=_weighted(terms, 0, 2, 0.95),
        must_have=_weighted(terms, 2, 6, 0.85),
        nice_to_have=_weighted(terms, 6, 9, 0.6),
        responsibilities=_weighted(terms, 9, 12, 0.65),
    )


def heuristic_evidence(
    signals: ExtractedSignals, base_resume: ResumeContent, tailored_resume: ResumeContent
) -> list[EvidenceItem]:
    """A signal is present when its name occurs (case-insensitive) in the resume text."""
    base_text = resume_text(base_resume).lower()
    tailored_text = resume_text(tailored_resume).lower()

    items: list[EvidenceItem] = []
    for signal_type, signals_of_type in signals.by_type():
        for signal in signals_of_type:
            needle = signal.name.lower()
            present_before = needle in base_text
            present_after = needle in tailored_text
            strength_before = HEURISTIC_PRESENT_STRENGTH if present_before else 0.0
            strength_after = HEURISTIC_PRESENT_STRENGTH if present_after else 0.0
            items.append(
                EvidenceItem(
                    signal_type=signal_type,
                    signal_name=signal.name,
                    strength_before=strength_before,
                    strength_after=max(strength_after, strength_before),
                    present_before=present_before,
                    present_after=present_after,
                )
            )
    return items


def build_heuristic_details(
    base_resume: ResumeContent, tailored_resume: ResumeContent, vacancy_description: str
) -> ScoreDetails:
    signals = heuristic_signals(vacancy_description)
    evidence = heuristic_evidence(signals, base_resume, tailored_resume)
    scores, breakdown = compute_deterministic_scores(base_resume, tailored_resume, evidence)
    return build_details(scores, breakdown, signals, evidence)


# ---------------------------------------------------------------------------
# Error policy
# ---------------------------------------------------------------------------


def is_json_parse_like(message: str) -> bool:
    return JSON_PARSE_ERROR_PATTERN.search(message) is not None


def _as_score_details_error(exc: Exception) -> ScoreDetailsError:
    if isinstance(exc, ScoreDetailsError):
        return exc
    if isinstance(exc, DecodeError):
        return ScoreDetailsError(str(exc), "INVALID_JSON", exc)
    if isinstance(exc, LLMError):
        if is_json_parse_like(exc.message):
            return ScoreDetailsError(exc.message, "INVALID_JSON", exc)
        return ScoreDetailsError(f"LLM error: {exc.message}", "LLM_ERROR", exc)
    return ScoreDetailsError(f"Unexpected error: {exc}", "LLM_ERROR", exc)


def should_fallback_to_heuristic(error: ScoreDetailsError | None) -> bool:
    if error is None:
        return False
    if error.code in _FALLBACK_CODES:
        return True
    if error.code != "LLM_ERROR":
        return False
    if isinstance(error.cause, LLMError) and error.cause.code in NON_RECOVERABLE_LLM_CODES:
        return False
    return is_json_parse_like(str(error))


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def generate_score_details_with_llm(
    before_resume: ResumeContent,
    after_resume: ResumeContent,
    vacancy: Vacancy,
    existing: ScoreDetails | None = None,
    *,
    role: Role = Role.PUBLIC,
    user_id: str | None = None,
    conn: sqlite3.Connection | None = None,
    profile: CandidateProfile | None = None,
    options: ScoreDetailsOptions | None = None,
    _model_override: Model | None = None,
) -> ScoreDetailsResult:
    """Score *after_resume* against *vacancy* signal by signal.

    ``usage.attempts_used`` is the number of attempts actually made, whether
    the result came from the model or from the heuristic fallback.
    """
    options = options or ScoreDetailsOptions()
    route: ResolvedRoute | None = (
        resolve_scenario_model(conn, role, ScenarioKey.RESUME_ADAPTATION_SCORING_DETAIL) if conn else None
    )
    primary = route.primary if route else FALLBACK_MODEL
    strategy_key = route.strategy_key if route else None

    if existing is not None and options.reuse_existing:
        logger.debug("Reusing existing score details")
        return ScoreDetailsResult(
            details=existing,
            usage=UsageTotals().to_step_usage(0, fallback=primary),
            strategy_key=strategy_key,
            reused=True,
        )

    shared = build_shared_context(before_resume, vacancy, profile)
    temperature = options.temperature if options.temperature is not None else (
        route.temperature if route and route.temperature is not None else 0.0
    )
    max_attempts = max(1, min(options.max_attempts, MAX_ATTEMPTS_CAP))
    extract_tokens = EXTRACT_MAX_TOKENS
    map_tokens = MAP_MAX_TOKENS

    totals = UsageTotals()
    last_error: ScoreDetailsError | None = None
    attempts = 0

    async def _call(prompt: str, spec: ModelSpec, max_tokens: int) -> str:
        response = await call_llm(
            LLMRequest(
                prompt=prompt,
                model=spec,
                max_tokens=max_tokens,
                temperature=temperature,
                response_format=ResponseFormat.JSON,
                reasoning_effort=route.reasoning_effort if route else None,
                system_prompt=SHARED_SYSTEM_PROMPT,
            ),
            scenario=ScenarioKey.RESUME_ADAPTATION_SCORING_DETAIL,
            role=role,
            user_id=user_id,
            timeout=options.timeout,
            api_key=options.api_key,
            _model_override=_model_override,
        )
        totals.add(response)
        return response.content

    for attempt in range(1, max_attempts + 1):
        attempts = attempt
        spec = route.retry if attempt > 1 and route and route.retry else primary
        try:
            signals = parse_extracted_signals(
                await _call(build_extract_signals_prompt(shared.prompt), spec, extract_tokens)
            )
            evidence = parse_evidence_items(
                await _call(build_map_evidence_prompt(shared.prompt, after_resume, signals), spec, map_tokens)
            )
        except (LLMError, DecodeError, ScoreDetailsError) as exc:
            last_error = _as_score_details_error(exc)
            logger.debug("Score details attempt %d/%d failed: %s", attempt, max_attempts, last_error)
            if isinstance(exc, DecodeError):
                # truncated past repair; give the next attempt more room
                extract_tokens = int(extract_tokens * RETRY_TOKEN_GROWTH)
                map_tokens = int(map_tokens * RETRY_TOKEN_GROWTH)
            continue

        scores, breakdown = compute_deterministic_scores(before_resume, after_resume, evidence)
        return ScoreDetailsResult(
            details=build_details(scores, breakdown, signals, evidence),
            usage=totals.to_step_usage(attempt, fallback=spec),
            strategy_key=strategy_key,
        )

    if should_fallback_to_heuristic(last_error):
        logger.warning(
            "Detailed scoring output unusable, using heuristic details (shared context ~%d tokens): %s",
            shared.cache_token_estimate,
            last_error,
        )
        return ScoreDetailsResult(
            details=build_heuristic_details(before_resume, after_resume, vacancy.description),
            usage=totals.to_step_usage(attempts, fallback=primary),
            strategy_key=strategy_key,
            fallback_used=True,
        )

    raise last_error or ScoreDetailsError("Failed to generate detailed scoring", "MAX_RETRIES_EXCEEDED")
