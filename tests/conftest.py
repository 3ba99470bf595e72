"""Shared test fixtures: catalog databases, sample documents and scripted models."""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Callable

import pytest
from pydantic_ai.messages import ModelMessage, ModelResponse, TextPart
from pydantic_ai.models.function import AgentInfo, FunctionModel

from tailorcv.core.database import init_db, save_model
from tailorcv.core.models import (
    ExperienceEntry,
    LlmModel,
    LLMProvider,
    PersonalInfo,
    ResumeContent,
    Vacancy,
)


@pytest.fixture
def db(tmp_path: Path) -> sqlite3.Connection:
    """Return an initialised catalog database connection."""
    return init_db(tmp_path / "test.db")


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    """Return the path to a catalog database (initialised)."""
    p = tmp_path / "test.db"
    init_db(p).close()
    return p


@pytest.fixture
def add_model(db: sqlite3.Connection) -> Callable[..., LlmModel]:
    """Insert a catalog model and return it."""

    def _add(model_key: str = "gpt-4.1-mini", **fields) -> LlmModel:
        model = LlmModel(
            id=fields.pop("id", f"model-{model_key}"),
            provider=fields.pop("provider", LLMProvider.OPENAI),
            model_key=model_key,
            display_name=fields.pop("display_name", model_key),
            input_price_per_1m_usd=fields.pop("input_price_per_1m_usd", 0.4),
            output_price_per_1m_usd=fields.pop("output_price_per_1m_usd", 1.6),
            **fields,
        )
        save_model(db, model)
        return model

    return _add


@pytest.fixture
def base_resume() -> ResumeContent:
    return ResumeContent(
        personal_info=PersonalInfo(full_name="Alice Martin", email="alice@example.com", location="Copenhagen"),
        summary="Backend engineer building payment services in Python.",
        experience=[
            ExperienceEntry(
                company="Acme Pay",
                position="Senior Backend Engineer",
                start_date="2020-03",
                description="Built payment APIs in Python and PostgreSQL. Mentored two engineers.",
            ),
            ExperienceEntry(
                company="Nordic Retail",
                position="Backend Developer",
                start_date="2017-01",
                end_date="2020-02",
                description="Maintained order processing services.",
            ),
        ],
        skills=["Python", "PostgreSQL", "Docker"],
    )


@pytest.fixture
def tailored_resume(base_resume: ResumeContent) -> ResumeContent:
    return base_resume.model_copy(
        update={
            "summary": "Backend engineer leading API economy initiatives with Python and Kubernetes.",
            "skills": ["Python", "Kubernetes", "PostgreSQL", "Docker"],
        }
    )


@pytest.fixture
def vacancy() -> Vacancy:
    return Vacancy(
        company="Fintech Labs",
        job_position="Staff Backend Engineer",
        description=(
            "We are seeking a staff backend engineer with Python and Kubernetes experience. "
            "You will drive our API economy platform, mentor engineers and own PostgreSQL "
            "performance. Kubernetes operators and Terraform are a plus."
        ),
    )


# ---------------------------------------------------------------------------
# Scripted models
# ---------------------------------------------------------------------------


def _last_user_prompt(messages: list[ModelMessage]) -> str:
    parts = getattr(messages[-1], "parts", [])
    return "\n".join(
        part.content
        for part in parts
        if getattr(part, "part_kind", "") == "user-prompt" and isinstance(part.content, str)
    )


def _system_prompt(messages: list[ModelMessage]) -> str:
    return "\n".join(
        part.content
        for message in messages
        for part in getattr(message, "parts", [])
        if getattr(part, "part_kind", "") == "system-prompt"
    )


class ScriptedModel:
    """FunctionModel that replays canned responses and records each prompt.

    An ``Exception`` in the script is raised instead of answering.
    """

    def __init__(self, responses: list[str | Exception]):
        self.responses = list(responses)
        self.prompts: list[str] = []
        self.system_prompts: list[str] = []
        self.settings: list[dict] = []
        self.model = FunctionModel(self._respond)

    def _respond(self, messages: list[ModelMessage], info: AgentInfo) -> ModelResponse:
        self.prompts.append(_last_user_prompt(messages))
        self.system_prompts.append(_system_prompt(messages))
        self.settings.append(dict(info.model_settings or {}))
        if not self.responses:
            raise RuntimeError("no scripted response left")
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return ModelResponse(parts=[TextPart(item)])

    @property
    def calls(self) -> int:
        return len(self.prompts)


@pytest.fixture
def scripted() -> Callable[..., ScriptedModel]:
    """Factory: ``scripted(response, ...)`` builds a ``ScriptedModel``."""

    def _make(*responses: str | Exception) -> ScriptedModel:
        return ScriptedModel(list(responses))

    return _make
