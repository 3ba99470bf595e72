"""Deterministic composite scoring and version-tagged score breakdowns.

Three producers share the breakdown shape and are told apart by ``version``:

* ``llm-baseline-v1``: before/after scores returned by the scoring model.
* ``fallback-keyword-v1``: the keyword-overlap heuristic used when the
  scoring model fails.
* ``deterministic-v1``: composite of signal evidence (detailed scoring).
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from typing import Any

from tailorcv.core.models import (
    GateStatus,
    MatchScores,
    ResumeContent,
    ScoreBreakdown,
    ScoreComponent,
    ScoreComponents,
    SignalType,
)

LLM_BASELINE_VERSION = "llm-baseline-v1"
FALLBACK_KEYWORD_VERSION = "fallback-keyword-v1"
DETERMINISTIC_VERSION = "deterministic-v1"

SCORE_WEIGHTS: dict[str, float] = {
    "core": 0.35,
    "must_have": 0.3,
    "nice_to_have": 0.1,
    "responsibilities": 0.15,
    "human": 0.1,
}

_HUMAN_CLICHES = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"results-driven",
        r"detail-oriented",
        r"passionate",
        r"team player",
        r"fast-paced environment",
        r"proven track record",
        r"hard[- ]working",
        r"self-starter",
    )
]

PRESENCE_BONUS = 0.2


@dataclass
class EvidenceItem:
    signal_type: SignalType
    signal_name: str
    strength_before: float
    strength_after: float
    present_before: bool
    present_after: bool
    refs_before: list[str] = field(default_factory=list)
    refs_after: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def clamp_unit(value: float) -> float:
    if not math.isfinite(value):
        return 0.0
    return max(0.0, min(1.0, value))


def clamp_score(value: float) -> int:
    """Round half up and clamp into 0..100."""
    if not math.isfinite(value):
        return 0
    return max(0, min(100, math.floor(value + 0.5)))


def normalize_scores(before: float, after: float) -> MatchScores:
    """Clamp both scores and lift *after* to at least *before*."""
    clamped_before = clamp_score(before)
    return MatchScores(
        match_score_before=clamped_before,
        match_score_after=max(clamp_score(after), clamped_before),
    )


def flatten_text(value: Any) -> list[str]:
    """Every string leaf of a nested dict/list structure, in order."""
    if isinstance(value, str):
        return [value]
    if isinstance(value, list):
        return [text for item in value for text in flatten_text(item)]
    if isinstance(value, dict):
        return [text for item in value.values() for text in flatten_text(item)]
    return []


def resume_text(resume: ResumeContent) -> str:
    return " ".join(flatten_text(resume.to_prompt_dict()))


def _component_score(items: list[EvidenceItem]) -> tuple[int, int]:
    if not items:
        return 60, 60
    before = sum(
        clamp_unit(item.strength_before + (PRESENCE_BONUS if item.present_before else 0))
        for item in items
    ) / len(items)
    after = sum(
        clamp_unit(item.strength_after + (PRESENCE_BONUS if item.present_after else 0))
        for item in items
    ) / len(items)
    return clamp_score(30 + before * 70), clamp_score(30 + after * 70)


def human_score(resume: ResumeContent) -> int:
    """Readability heuristic: clichés, long words, repetitive openers, length."""
    values = flatten_text(resume.to_prompt_dict())
    text = re.sub(r"\s+", " ", " ".join(values)).strip()
    if not text:
        return 55

    score = 82
    cliches = sum(len(pattern.findall(text)) for pattern in _HUMAN_CLICHES)
    score -= min(16, cliches * 2)

    words = [w for w in text.split(" ") if w]
    if words and sum(len(w) for w in words) / len(words) > 7:
        score -= 3

    lines = [line.strip() for value in values for line in value.split("\n") if line.strip()]
    starts = [line.split()[0].lower() for line in lines]
    if starts and len(set(starts)) / len(starts) < 0.5:
        score -= 5

    score -= min(8, max(0, math.floor((len(text) - 3800) / 500 + 0.5)))
    return clamp_score(score)


def _weighted_composite(parts: dict[str, int]) -> int:
    return clamp_score(sum(parts[name] * weight for name, weight in SCORE_WEIGHTS.items()))


def build_breakdown(version: str, parts: dict[str, tuple[int, int]]) -> ScoreBreakdown:
    components = {
        name: ScoreComponent(before=before, after=after, weight=SCORE_WEIGHTS[name])
        for name, (before, after) in parts.items()
    }
    return ScoreBreakdown(
        version=version,
        components=ScoreComponents(**components),
        gate_status=GateStatus(),
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def uniform_breakdown(scores: MatchScores, version: str) -> ScoreBreakdown:
    """Breakdown where every component carries the overall before/after pair."""
    pair = (scores.match_score_before, scores.match_score_after)
    return build_breakdown(version, {name: pair for name in SCORE_WEIGHTS})


def compute_deterministic_scores(
    base_resume: ResumeContent,
    tailored_resume: ResumeContent,
    evidence: list[EvidenceItem],
) -> tuple[MatchScores, ScoreBreakdown]:
    def of_type(signal_type: SignalType) -> list[EvidenceItem]:
        return [item for item in evidence if item.signal_type == signal_type]

    parts = {
        "core": _component_score(of_type(SignalType.CORE)),
        "must_have": _component_score(of_type(SignalType.MUST_HAVE)),
        "nice_to_have": _component_score(of_type(SignalType.NICE_TO_HAVE)),
        "responsibilities": _component_score(of_type(SignalType.RESPONSIBILITY)),
        "human": (human_score(base_resume), human_score(tailored_resume)),
    }
    before = _weighted_composite({name: pair[0] for name, pair in parts.items()})
    after = _weighted_composite({name: pair[1] for name, pair in parts.items()})
    scores = MatchScores(match_score_before=before, match_score_after=max(after, before))
    return scores, build_breakdown(DETERMINISTIC_VERSION, parts)
