from __future__ import annotations

import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from tailorcv.core.documents import load_profile, load_resume, load_text, load_vacancy, save_resume
from tailorcv.core.models import ResumeContent


RESUME_YAML = """\
personalInfo:
  fullName: Alice Martin
  email: alice@example.com
summary: Backend engineer.
experience:
  - company: Acme Pay
    position: Engineer
    startDate: "2020-03"
skills: [Python, Docker]
"""


class TestLoadResume:
    def test_camel_case_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "resume.yaml"
        path.write_text(RESUME_YAML, encoding="utf-8")
        resume = load_resume(path)
        assert resume.personal_info.full_name == "Alice Martin"
        assert resume.experience[0].start_date == "2020-03"
        assert resume.skills == ["Python", "Docker"]

    def test_snake_case_json_with_content_wrapper(self, tmp_path: Path) -> None:
        path = tmp_path / "resume.json"
        path.write_text(
            json.dumps(
                {
                    "content": {
                        "personal_info": {"full_name": "Bob", "email": "bob@example.com"},
                        "skills": ["Go"],
                    }
                }
            ),
            encoding="utf-8",
        )
        resume = load_resume(path)
        assert resume.personal_info.full_name == "Bob"
        assert resume.skills == ["Go"]

    def test_empty_file_raises(self, tmp_path: Path) -> None:
        path = tmp_path / "empty.yaml"
        path.write_text("", encoding="utf-8")
        with pytest.raises(ValueError, match="empty"):
            load_resume(path)

    def test_list_document_raises(self, tmp_path: Path) -> None:
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(ValueError, match="mapping"):
            load_resume(path)

    def test_missing_required_field(self, tmp_path: Path) -> None:
        path = tmp_path / "resume.yaml"
        path.write_text("summary: nothing else\n", encoding="utf-8")
        with pytest.raises(ValidationError):
            load_resume(path)


class TestSaveResume:
    def test_writes_camel_case(self, tmp_path: Path, base_resume: ResumeContent) -> None:
        path = tmp_path / "out" / "tailored.yaml"
        save_resume(base_resume, path)
        text = path.read_text(encoding="utf-8")
        assert "personalInfo:" in text
        assert "startDate:" in text
        assert load_resume(path) == base_resume


class TestOtherDocuments:
    def test_vacancy(self, tmp_path: Path) -> None:
        path = tmp_path / "vacancy.yaml"
        path.write_text("company: Fintech Labs\njobPosition: Staff Engineer\ndescription: Python\n")
        vacancy = load_vacancy(path)
        assert vacancy.job_position == "Staff Engineer"
        assert vacancy.to_prompt_dict() == {
            "company": "Fintech Labs",
            "jobPosition": "Staff Engineer",
            "description": "Python",
        }

    def test_profile_keeps_nulls_in_prompt(self, tmp_path: Path) -> None:
        path = tmp_path / "profile.yaml"
        path.write_text("preferredJobTitle: Staff Engineer\n")
        profile = load_profile(path)
        assert profile.to_prompt_dict() == {
            "preferredJobTitle": "Staff Engineer",
            "targetIndustries": None,
            "careerGoals": None,
        }

    def test_load_text_strips(self, tmp_path: Path) -> None:
        path = tmp_path / "letter.md"
        path.write_text("\n  Dear team,\n\nHello.\n\n")
        assert load_text(path) == "Dear team,\n\nHello."

    def test_load_text_empty(self, tmp_path: Path) -> None:
        path = tmp_path / "letter.md"
        path.write_text("   \n")
        with pytest.raises(ValueError):
            load_text(path)
