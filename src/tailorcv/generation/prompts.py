"""Prompt templates and generation settings for resume adaptation and baseline scoring.

Both prompts start with the same wrapped shared context so the provider can
reuse its prompt cache between the two calls.
"""

from __future__ import annotations

import json

from tailorcv.core.models import ResumeContent, StrategyKey
from tailorcv.llm.shared_context import wrap_shared_context

ADAPTATION_TEMPERATURE = 0.3
ADAPTATION_MAX_TOKENS = 6000
ADAPTATION_MAX_RETRIES = 2

SCORING_TEMPERATURE = 0.0
SCORING_MAX_TOKENS = 800
SCORING_MAX_RETRIES = 2

ADAPTATION_TASK_INSTRUCTIONS = """\
Task:
Tailor resume content for the target vacancy while preserving factual accuracy.

You may optimize:
- summary wording
- bullet ordering and emphasis
- section ordering
- skills ordering
- project/certification ordering

You must never:
- invent qualifications, achievements, companies, dates, or skills
- alter personal identity/contact fields
- alter employment dates, company names, or education facts
- remove existing skills/entities from source data

Return only valid JSON matching this schema:
{
  "content": {
    // ResumeContent object
  }
}

Rules:
- Keep existing schema shape and data types
- Keep all dates in YYYY-MM format
- Keep URLs valid
- Do not include markdown or explanations"""

STRATEGY_INSTRUCTIONS: dict[StrategyKey, str] = {
    StrategyKey.ECONOMY: """\
- Operate in minimal_edit mode
- Keep the original structure and wording unless a clear relevance gain exists
- Prioritize reordering over rewriting
- Rewrite only summary and the most relevant bullets in latest experience entries
- Do not expand section sizes or add extra narrative text
- Keep edits concise, plain, and ATS-friendly""",
    StrategyKey.QUALITY: """\
- Allow deeper targeted rewriting for summary and key bullets
- Improve clarity, specificity, and flow while preserving factual accuracy
- Increase keyword alignment naturally (no keyword stuffing)
- Keep bullet language human and concrete; avoid AI-like cliches
- Prefer action + context (+ impact when present in source data)
- Do not invent metrics or achievements""",
}

BASELINE_SCORE_GUIDELINES = """\
Task:
Estimate baseline match score before and after resume adaptation.

Output JSON schema:
{
  "matchScoreBefore": number,
  "matchScoreAfter": number
}

Rules:
- Return valid JSON only.
- Scores must be integers from 0 to 100.
- Ensure matchScoreAfter is not lower than matchScoreBefore.
- Do not add explanation fields."""


def strategy_directive(strategy_key: StrategyKey) -> str:
    """The labeled strategy block; the key appears verbatim as ``Strategy: <key>``."""
    return f"Strategy: {strategy_key.value}\n{STRATEGY_INSTRUCTIONS[strategy_key]}"


def build_adaptation_prompt(
    shared_context: str,
    strategy_key: StrategyKey,
    previous_content: ResumeContent | None = None,
) -> str:
    parts = [
        wrap_shared_context(shared_context),
        f"{ADAPTATION_TASK_INSTRUCTIONS}\n{strategy_directive(strategy_key)}",
    ]
    if previous_content is not None:
        parts.append(
            "Previous tailored version (improve on it, same rules apply):\n"
            + json.dumps(previous_content.to_prompt_dict(), indent=2, ensure_ascii=False)
        )
    parts.append('Return JSON with "content" only.')
    return "\n\n".join(parts)


def build_baseline_score_prompt(shared_context: str, tailored_resume: ResumeContent) -> str:
    return (
        f"{wrap_shared_context(shared_context)}\n\n"
        f"Tailored resume:\n{json.dumps(tailored_resume.to_prompt_dict(), ensure_ascii=False)}\n\n"
        f"{BASELINE_SCORE_GUIDELINES}"
    )
