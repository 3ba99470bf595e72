"""Resume + vacancy context built once per request and reused across calls.

The serialized context is the leading part of both the adaptation and the
scoring prompts, byte for byte, so provider-side prompt caching can hit.
"""

from __future__ import annotations

import json
import math

from pydantic import BaseModel

from tailorcv.core.models import CandidateProfile, ResumeContent, Vacancy

SHARED_CONTEXT_HEADER = "Shared context for resume adaptation and scoring"
SHARED_CONTEXT_START = "SHARED_CONTEXT_START"
SHARED_CONTEXT_END = "SHARED_CONTEXT_END"

SHARED_SYSTEM_PROMPT = """\
You are an expert resume optimization assistant.

Use only provided data and task instructions.
Never invent facts.
When a task requests JSON output, return valid JSON only."""

CHARS_PER_TOKEN = 4


class SharedContext(BaseModel):
    prompt: str
    cache_token_estimate: int


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def build_shared_context(
    base_resume: ResumeContent,
    vacancy: Vacancy,
    profile: CandidateProfile | None = None,
) -> SharedContext:
    payload = {
        "vacancy": vacancy.to_prompt_dict(),
        "profile": profile.to_prompt_dict() if profile else None,
        "baseResume": base_resume.to_prompt_dict(),
    }
    prompt = f"{SHARED_CONTEXT_HEADER}\n\n{json.dumps(payload, indent=2, ensure_ascii=False)}"
    return SharedContext(prompt=prompt, cache_token_estimate=estimate_tokens(prompt))


def wrap_shared_context(prompt: str) -> str:
    """Delimit the shared block so task instructions can refer to it."""
    return f"{SHARED_CONTEXT_START}\n{prompt}\n{SHARED_CONTEXT_END}"
