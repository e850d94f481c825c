"""Data models for analysis results, findings and persisted records."""

import uuid
from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

Severity = Literal["CRITICAL", "HIGH", "MEDIUM", "LOW"]
Category = Literal["bug", "security", "performance", "quality", "style", "architecture"]
Recommendation = Literal["APPROVE", "REQUEST_CHANGES", "COMMENT"]
ProviderId = Literal["openai", "claude", "gemini"]

JobStatus = Literal["queued", "analyzing", "completed", "failed"]
ReviewStatus = Literal["pending", "analyzing", "completed", "failed"]
SessionStatus = Literal["generating", "ready", "pushed", "failed"]
FixStatus = Literal["pending", "generating", "completed", "failed"]

_SEVERITIES = {"CRITICAL", "HIGH", "MEDIUM", "LOW"}
_CATEGORIES = {"bug", "security", "performance", "quality", "style", "architecture"}
_RECOMMENDATIONS = {"APPROVE", "REQUEST_CHANGES", "COMMENT"}


def new_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# AI RESULT SHAPES
# =============================================================================
class Issue(BaseModel):
    """A single finding reported by a provider."""

    model_config = ConfigDict(populate_by_name=True)

    severity: Severity = Field(
        default="MEDIUM", description="CRITICAL, HIGH, MEDIUM, LOW"
    )
    category: Category = Field(
        default="quality",
        alias="type",
        description="bug, security, performance, quality, style, architecture",
    )
    file: str = Field(default="", description="File path the issue refers to")
    line: int | None = Field(default=None, description="Line number in the file")
    description: str = Field(description="What the issue is")
    suggestion: str | None = Field(default=None, description="How to fix it")
    code_example: str | None = Field(default=None, description="Fixed code snippet")

    @field_validator("severity", mode="before")
    @classmethod
    def _normalise_severity(cls, value):
        if isinstance(value, str):
            value = value.strip().upper()
            return value if value in _SEVERITIES else "MEDIUM"
        return value

    @field_validator("category", mode="before")
    @classmethod
    def _normalise_category(cls, value):
        if isinstance(value, str):
            value = value.strip().lower()
            return value if value in _CATEGORIES else "quality"
        return value

    @field_validator("line", mode="before")
    @classmethod
    def _coerce_line(cls, value):
        # Models sometimes answer "42", "" or 0 for "no line"
        if value in ("", 0, "0"):
            return None
        if isinstance(value, str):
            return int(value) if value.strip().isdigit() else None
        return value

    @field_validator("file", mode="before")
    @classmethod
    def _coerce_file(cls, value):
        return "" if value is None else value


class CanonicalResult(BaseModel):
    """Provider-agnostic shape of one analysis response."""

    overall_assessment: str = ""
    complexity_score: int = Field(default=5, ge=1, le=10)
    issues: list[Issue] = Field(default_factory=list)
    positive_points: list[str] = Field(default_factory=list)
    recommendation: Recommendation = "COMMENT"

    @field_validator("complexity_score", mode="before")
    @classmethod
    def _clamp_complexity(cls, value):
        if value is None:
            return 5
        try:
            score = round(float(value))
        except (TypeError, ValueError, OverflowError):
            # NaN and infinities are not scores
            return 5
        return min(10, max(1, score))

    @field_validator("recommendation", mode="before")
    @classmethod
    def _normalise_recommendation(cls, value):
        if isinstance(value, str):
            value = value.strip().upper().replace(" ", "_")
            return value if value in _RECOMMENDATIONS else "COMMENT"
        return value

    @field_validator("positive_points", mode="before")
    @classmethod
    def _coerce_points(cls, value):
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return value


# =============================================================================
# PERSISTED RECORDS
# =============================================================================
class Repository(BaseModel):
    id: str = Field(default_factory=new_id)
    user_id: str
    owner: str
    name: str
    full_name: str
    default_branch: str | None = None


class AnalysisJob(BaseModel):
    """Durable record of one full-repository analysis run."""

    id: str = Field(default_factory=new_id)
    repository_id: str
    owner: str
    repo: str
    user_id: str
    provider: ProviderId
    status: JobStatus = "queued"
    total_files: int = 0
    files_analyzed: int = 0
    total_issues: int = 0
    critical_issues: int = 0
    high_issues: int = 0
    medium_issues: int = 0
    low_issues: int = 0
    overall_score: int | None = None
    summary: str | None = None
    recommendations: list[str] = Field(default_factory=list)
    failure_reason: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    completed_at: datetime | None = None


class StoredIssue(Issue):
    """An issue persisted against exactly one analysis job or review."""

    id: str = Field(default_factory=new_id)
    analysis_id: str | None = None
    review_id: str | None = None


class Review(BaseModel):
    """Pull-request (or whole-repository, pr_number=0) review record."""

    id: str = Field(default_factory=new_id)
    user_id: str
    repository_id: str
    pr_number: int
    pr_title: str
    pr_url: str
    status: ReviewStatus = "pending"
    overall_assessment: str | None = None
    complexity_score: int | None = None
    recommendation: Recommendation | None = None
    provider: ProviderId | None = None
    analysis_id: str | None = None
    failure_reason: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    analyzed_at: datetime | None = None


class Metrics(BaseModel):
    id: str = Field(default_factory=new_id)
    review_id: str
    files_changed: int
    lines_added: int = 0
    lines_deleted: int = 0
    analysis_time_ms: int
    ai_tokens_used: int


class DebugSession(BaseModel):
    """A remediation workspace grouping generated fixes."""

    id: str = Field(default_factory=new_id)
    user_id: str
    owner: str
    repo: str
    repository_id: str | None = None
    session_name: str
    status: SessionStatus = "generating"
    total_issues: int = 0
    fixed_issues: int = 0
    branch: str | None = None
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: datetime | None = None


class DebugFix(BaseModel):
    id: str = Field(default_factory=new_id)
    session_id: str
    issue_title: str
    issue_description: str
    file: str = ""
    original_code: str = ""
    fixed_code: str | None = None
    explanation: str | None = None
    analysis: str | None = None
    error: str | None = None
    status: FixStatus = "pending"
    created_at: datetime = Field(default_factory=utcnow)
    completed_at: datetime | None = None


class UserSettings(BaseModel):
    """Per-user provider selection and credentials."""

    user_id: str
    provider: ProviderId = "openai"
    openai_key: str | None = None
    anthropic_key: str | None = None
    gemini_key: str | None = None


class RepositoryContext(BaseModel):
    """What the remediation prompt needs to know about the target repo."""

    owner: str
    name: str
    language: str = "Unknown"
    branch: str = "main"
