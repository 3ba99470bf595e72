from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, TypeVar

import yaml
from pydantic import BaseModel

from tailorcv.core.models import CandidateProfile, ResumeContent, Vacancy

logger = logging.getLogger(__name__)

_DocumentT = TypeVar("_DocumentT", bound=BaseModel)


def _load_mapping(path: Path) -> dict[str, Any]:
    # JSON is a YAML subset, so .json files load the same way
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        raise ValueError(f"Document file is empty: {path}")
    if not isinstance(data, dict):
        raise ValueError(f"Document file must contain a mapping: {path}")
    return data


def _load(path: Path, model: type[_DocumentT]) -> _DocumentT:
    logger.debug("Loading %s from %s", model.__name__, path)
    return model.model_validate(_load_mapping(path))


def load_resume(path: Path) -> ResumeContent:
    """Read a resume YAML/JSON file. A top-level ``content`` key is unwrapped."""
    data = _load_mapping(path)
    if isinstance(data.get("content"), dict):
        data = data["content"]
    logger.debug("Loading ResumeContent from %s", path)
    return ResumeContent.model_validate(data)


def load_vacancy(path: Path) -> Vacancy:
    return _load(path, Vacancy)


def load_profile(path: Path) -> CandidateProfile:
    return _load(path, CandidateProfile)


def save_resume(resume: ResumeContent, path: Path) -> None:
    """Write *resume* as camelCase YAML, the shape the prompts use."""
    logger.debug("Saving resume to %s", path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        yaml.dump(
            resume.to_prompt_dict(),
            f,
            default_flow_style=False,
            allow_unicode=True,
            sort_keys=False,
        )


def load_text(path: Path) -> str:
    text = path.read_text(encoding="utf-8").strip()
    if not text:
        raise ValueError(f"File is empty: {path}")
    return text
