"""Domain models for the routing catalog, resume documents and generation results."""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Any
from uuid import uuid4

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class ScenarioKey(str, enum.Enum):
    RESUME_PARSE = "resume_parse"
    RESUME_ADAPTATION = "resume_adaptation"
    RESUME_ADAPTATION_SCORING = "resume_adaptation_scoring"
    RESUME_ADAPTATION_SCORING_DETAIL = "resume_adaptation_scoring_detail"
    COVER_LETTER_GENERATION = "cover_letter_generation"
    COVER_LETTER_GENERATION_DRAFT = "cover_letter_generation_draft"
    COVER_LETTER_HUMANIZER_CRITIC = "cover_letter_humanizer_critic"


class Role(str, enum.Enum):
    SUPER_ADMIN = "super_admin"
    FRIEND = "friend"
    PUBLIC = "public"


class LLMProvider(str, enum.Enum):
    OPENAI = "openai"
    GEMINI = "gemini"


class ProviderType(str, enum.Enum):
    PLATFORM = "platform"
    BYOK = "byok"


class StrategyKey(str, enum.Enum):
    ECONOMY = "economy"
    QUALITY = "quality"


class ResponseFormat(str, enum.Enum):
    TEXT = "text"
    JSON = "json"


class ReasoningEffort(str, enum.Enum):
    AUTO = "auto"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ModelStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class RouteSource(str, enum.Enum):
    ROLE_OVERRIDE = "role_override"
    SCENARIO_DEFAULT = "scenario_default"


# ---------------------------------------------------------------------------
# Model catalog & routing
# ---------------------------------------------------------------------------

class LlmModel(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid4()))
    provider: LLMProvider
    model_key: str
    display_name: str
    status: ModelStatus = ModelStatus.ACTIVE
    input_price_per_1m_usd: float = Field(default=0.0, ge=0)
    output_price_per_1m_usd: float = Field(default=0.0, ge=0)
    cached_input_price_per_1m_usd: float | None = Field(default=None, ge=0)
    max_context_tokens: int | None = None
    max_output_tokens: int | None = None
    supports_json: bool = False
    supports_tools: bool = False
    supports_streaming: bool = False
    notes: str | None = None
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)


class Scenario(BaseModel):
    key: ScenarioKey
    label: str
    description: str | None = None
    enabled: bool = True


class RoutingAssignmentInput(BaseModel):
    model_id: str
    retry_model_id: str | None = None
    temperature: float | None = Field(default=None, ge=0, le=2)
    max_tokens: int | None = Field(default=None, gt=0)
    response_format: ResponseFormat | None = None
    reasoning_effort: ReasoningEffort | None = None
    strategy_key: StrategyKey | None = None


class RoutingAssignment(RoutingAssignmentInput):
    """A stored scenario default (``role is None``) or role override."""

    scenario_key: ScenarioKey
    role: Role | None = None
    updated_at: datetime = Field(default_factory=datetime.now)


class RuntimeModel(BaseModel):
    """Catalog lookup result: an assignment with its hydrated models."""

    source: RouteSource
    assignment: RoutingAssignment
    model: LlmModel
    retry_model: LlmModel | None = None


class ModelSpec(BaseModel):
    provider: LLMProvider
    model_key: str
    input_price_per_1m_usd: float = 0.0
    output_price_per_1m_usd: float = 0.0
    cached_input_price_per_1m_usd: float | None = None

    @classmethod
    def from_catalog(cls, model: LlmModel) -> ModelSpec:
        return cls(
            provider=model.provider,
            model_key=model.model_key,
            input_price_per_1m_usd=model.input_price_per_1m_usd,
            output_price_per_1m_usd=model.output_price_per_1m_usd,
            cached_input_price_per_1m_usd=model.cached_input_price_per_1m_usd,
        )


class ResolvedRoute(BaseModel):
    source: RouteSource
    primary: ModelSpec
    retry: ModelSpec | None = None
    strategy_key: StrategyKey | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    response_format: ResponseFormat | None = None
    reasoning_effort: ReasoningEffort | None = None


# ---------------------------------------------------------------------------
# Resume & vacancy documents
# ---------------------------------------------------------------------------

class _Document(BaseModel):
    """Accepts snake_case or camelCase keys, dumps camelCase for prompts."""

    model_config = ConfigDict(populate_by_name=True)


class PersonalInfo(_Document):
    full_name: str = Field(validation_alias=AliasChoices("full_name", "fullName"), serialization_alias="fullName")
    email: str
    phone: str | None = None
    location: str | None = None
    linkedin: str | None = None
    website: str | None = None


class ExperienceEntry(_Document):
    company: str
    position: str
    start_date: str = Field(validation_alias=AliasChoices("start_date", "startDate"), serialization_alias="startDate")
    end_date: str | None = Field(
        default=None, validation_alias=AliasChoices("end_date", "endDate"), serialization_alias="endDate"
    )
    description: str = ""
    projects: list[str] = Field(default_factory=list)


class EducationEntry(_Document):
    institution: str
    degree: str
    field: str | None = None
    start_date: str | None = Field(
        default=None, validation_alias=AliasChoices("start_date", "startDate"), serialization_alias="startDate"
    )
    end_date: str | None = Field(
        default=None, validation_alias=AliasChoices("end_date", "endDate"), serialization_alias="endDate"
    )


class CertificationEntry(_Document):
    name: str
    issuer: str | None = None
    date: str | None = None


class ResumeLanguage(_Document):
    language: str
    level: str


class ResumeContent(_Document):
    personal_info: PersonalInfo = Field(
        validation_alias=AliasChoices("personal_info", "personalInfo"), serialization_alias="personalInfo"
    )
    summary: str | None = None
    experience: list[ExperienceEntry] = Field(default_factory=list)
    education: list[EducationEntry] = Field(default_factory=list)
    skills: list[str] = Field(default_factory=list)
    certifications: list[CertificationEntry] = Field(default_factory=list)
    languages: list[ResumeLanguage] = Field(default_factory=list)

    def to_prompt_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Vacancy(_Document):
    company: str
    job_position: str | None = Field(
        default=None,
        validation_alias=AliasChoices("job_position", "jobPosition"),
        serialization_alias="jobPosition",
    )
    description: str

    def to_prompt_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class CandidateProfile(_Document):
    preferred_job_title: str | None = Field(
        default=None,
        validation_alias=AliasChoices("preferred_job_title", "preferredJobTitle"),
        serialization_alias="preferredJobTitle",
    )
    target_industries: str | None = Field(
        default=None,
        validation_alias=AliasChoices("target_industries", "targetIndustries"),
        serialization_alias="targetIndustries",
    )
    career_goals: str | None = Field(
        default=None,
        validation_alias=AliasChoices("career_goals", "careerGoals"),
        serialization_alias="careerGoals",
    )

    def to_prompt_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------

class ScoreComponent(BaseModel):
    before: int = Field(ge=0, le=100)
    after: int = Field(ge=0, le=100)
    weight: float


class ScoreComponents(BaseModel):
    core: ScoreComponent
    must_have: ScoreComponent
    nice_to_have: ScoreComponent
    responsibilities: ScoreComponent
    human: ScoreComponent


class GateStatus(BaseModel):
    schema_valid: bool = True
    identity_stable: bool = True
    hallucination_free: bool = True


class ScoreBreakdown(BaseModel):
    version: str
    components: ScoreComponents
    gate_status: GateStatus = Field(default_factory=GateStatus)


class StepUsage(BaseModel):
    provider: LLMProvider
    provider_type: ProviderType
    model: str
    cost: float = 0.0
    tokens_used: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    cached_input_tokens: int = 0
    attempts_used: int = 1


class MatchScores(BaseModel):
    match_score_before: int = Field(ge=0, le=100)
    match_score_after: int = Field(ge=0, le=100)


class GenerationResult(BaseModel):
    content: ResumeContent
    match_score_before: int
    match_score_after: int
    score_breakdown: ScoreBreakdown
    strategy_key: StrategyKey
    adaptation: StepUsage
    scoring: StepUsage | None = None
    scoring_fallback_used: bool = False
    shared_context_token_estimate: int = 0


class SignalType(str, enum.Enum):
    CORE = "core"
    MUST_HAVE = "mustHave"
    NICE_TO_HAVE = "niceToHave"
    RESPONSIBILITY = "responsibility"


class DetailedEvidence(BaseModel):
    signal_type: SignalType
    signal: str
    weight: float
    strength_before: float
    strength_after: float
    present_before: bool
    present_after: bool
    evidence_before: list[str] = Field(default_factory=list)
    evidence_after: list[str] = Field(default_factory=list)


class ScoreSummary(BaseModel):
    before: int
    after: int
    improvement: int


class ScoreDetails(BaseModel):
    summary: ScoreSummary
    matched: list[DetailedEvidence] = Field(default_factory=list)
    gaps: list[DetailedEvidence] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    score_breakdown: ScoreBreakdown


class ScoreDetailsResult(BaseModel):
    details: ScoreDetails
    usage: StepUsage
    strategy_key: StrategyKey | None = None
    fallback_used: bool = False
    reused: bool = False


# ---------------------------------------------------------------------------
# Cover letters
# ---------------------------------------------------------------------------

class CoverLetterType(str, enum.Enum):
    LETTER = "letter"
    MESSAGE = "message"


class CoverLetterSettings(BaseModel):
    language: str = "en"
    market: str = "default"
    type: CoverLetterType = CoverLetterType.LETTER
    tone: str = "professional"
    length_preset: str = "standard"
    character_limit: int | None = None


class HumanizerConfig(BaseModel):
    min_naturalness_score: int = 75
    max_ai_risk_score: int = 35
    max_rewrite_passes: int = 1
    debug_logs: bool = True


class QualityEvaluation(BaseModel):
    naturalness_score: int = Field(ge=0, le=100)
    ai_pattern_risk_score: int = Field(ge=0, le=100)
    specificity_score: int = Field(ge=0, le=100)
    locale_fit_score: int = Field(ge=0, le=100)
    rewrite_recommended: bool = False
    issues: list[str] = Field(default_factory=list)
    targeted_fixes: list[str] = Field(default_factory=list)


class HumanizeResult(BaseModel):
    content: str
    subject_line: str | None = None
    passes_used: int = 0
    accepted: bool = False
    quality: QualityEvaluation | None = None
    usage: list[StepUsage] = Field(default_factory=list)
