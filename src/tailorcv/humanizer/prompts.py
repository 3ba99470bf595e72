"""Critic and rewrite prompts for the cover-letter humanizer."""

from __future__ import annotations

from tailorcv.core.models import CoverLetterSettings

CRITIC_TEMPERATURE = 0.1
CRITIC_MAX_TOKENS = 600
REWRITE_TEMPERATURE = 0.4
REWRITE_MAX_TOKENS = 2500

FACT_PRESERVATION_RULE = "Do not add new facts, employers, dates, tools, achievements, or contacts."

COVER_LETTER_SYSTEM_PROMPT = """\
You are an expert career writing assistant.
Write realistic cover letters and job application messages.
Do not invent facts, employers, dates, achievements, or skills.
Use only information provided in the input context.
When output is requested as JSON, return valid JSON only."""


def _context_lines(settings: CoverLetterSettings) -> str:
    return (
        f"- Locale: {settings.language}\n"
        f"- Market: {settings.market}\n"
        f"- Type: {settings.type.value}\n"
        f"- Tone: {settings.tone}\n"
        f"- Length preset: {settings.length_preset}\n"
        f"- Character limit: {_limit(settings)}"
    )


def _limit(settings: CoverLetterSettings) -> str:
    return str(settings.character_limit) if settings.character_limit is not None else "none"


def _numbered(items: list[str]) -> str:
    if not items:
        return "(none)"
    return "\n".join(f"{index}. {item}" for index, item in enumerate(items, start=1))


def build_critic_prompt(settings: CoverLetterSettings, content: str, subject_line: str | None) -> str:
    return f"""\
Task: Evaluate quality and human-likeness of a generated job application text.

Return valid JSON only:
{{
  "naturalnessScore": number, // 0..100 (higher is better)
  "aiPatternRiskScore": number, // 0..100 (higher means more AI-like)
  "specificityScore": number, // 0..100 (higher means more concrete evidence)
  "localeFitScore": number, // 0..100 (higher means better language/market fit)
  "rewriteRecommended": boolean,
  "issues": string[],
  "targetedFixes": string[]
}}

Rules:
- Be strict and practical.
- Focus on natural human phrasing, locale fit, and concrete value.
- Flag generic template language and AI-like artifacts.
- Flag incomplete or cut-off endings.
- Keep issues/fixes short and actionable.
- Do not include markdown or explanations outside JSON.

Context:
{_context_lines(settings)}

Subject line:
{subject_line or "(none)"}

Content:
{content}"""


def build_rewrite_prompt(
    settings: CoverLetterSettings,
    content: str,
    subject_line: str | None,
    issues: list[str],
    targeted_fixes: list[str],
) -> str:
    return f"""\
Task: Rewrite the provided cover-letter content to improve human-likeness and quality while preserving facts.

Return valid JSON only:
{{
  "contentMarkdown": "string",
  "subjectLine": "string | null"
}}

Hard constraints:
- Keep original meaning and factual claims.
- {FACT_PRESERVATION_RULE}
- Keep output locale as {settings.language} and market style {settings.market}.
- Keep output type as {settings.type.value}.
- Keep tone as {settings.tone}.
- Keep length preset as {settings.length_preset}.
- Respect character limit {_limit(settings)} when applicable.
- Do not use em dash (—) or en dash (–).
- Ensure final sentence is complete (no cut-off ending).
- Keep markdown simple (paragraphs/lists/light emphasis only), no code fences.

Quality issues detected:
{_numbered(issues)}

Targeted fixes to apply:
{_numbered(targeted_fixes)}

Current subject line:
{subject_line or "(none)"}

Current content:
{content}"""
