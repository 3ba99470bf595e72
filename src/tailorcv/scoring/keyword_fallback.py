"""Keyword-overlap match scores, used when the scoring model fails.

Comparison rule: vacancy keywords are the distinct lowercase tokens of at
least three characters matching ``[a-z0-9][a-z0-9+#-]*``. Coverage is the
share of vacancy keywords present in a resume's token set. Then::

    before = clamp(42 + 46 * coverage_base)
    gain   = clamp(30 * max(0, coverage_tailored - coverage_base))
           + (2 if coverage_tailored >= coverage_base else 0)
    after  = max(before, clamp(before + gain))

A vacancy without keywords scores 62 -> 74. Identical inputs always give
identical scores and ``after >= before`` always holds.
"""

from __future__ import annotations

import re

from tailorcv.core.models import MatchScores, ResumeContent, ScoreBreakdown
from tailorcv.scoring.breakdown import (
    FALLBACK_KEYWORD_VERSION,
    clamp_score,
    normalize_scores,
    resume_text,
    uniform_breakdown,
)

_WORD = re.compile(r"[a-z0-9][a-z0-9+#-]*")
MIN_WORD_LENGTH = 3

NO_KEYWORD_SCORES = (62, 74)


def tokenize(text: str) -> set[str]:
    return {word for word in _WORD.findall(text.lower()) if len(word) >= MIN_WORD_LENGTH}


def coverage(keywords: set[str], corpus: set[str]) -> float:
    if not keywords:
        return 0.0
    return len(keywords & corpus) / len(keywords)


def keyword_fallback_scores(
    base_resume: ResumeContent,
    tailored_resume: ResumeContent,
    vacancy_description: str,
) -> tuple[MatchScores, ScoreBreakdown]:
    keywords = tokenize(vacancy_description)
    if not keywords:
        scores = normalize_scores(*NO_KEYWORD_SCORES)
        return scores, uniform_breakdown(scores, FALLBACK_KEYWORD_VERSION)

    base_coverage = coverage(keywords, tokenize(resume_text(base_resume)))
    tailored_coverage = coverage(keywords, tokenize(resume_text(tailored_resume)))

    before = clamp_score(42 + base_coverage * 46)
    improvement = clamp_score(max(tailored_coverage - base_coverage, 0) * 30)
    minimal_gain = 2 if tailored_coverage >= base_coverage else 0
    after = clamp_score(max(before, before + improvement + minimal_gain))

    scores = normalize_scores(before, after)
    return scores, uniform_breakdown(scores, FALLBACK_KEYWORD_VERSION)
