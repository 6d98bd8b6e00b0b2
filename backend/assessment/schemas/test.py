"""
University Assessment Engine - Test Schemas
Pydantic schemas for test authoring, listing and publishing
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from assessment.schemas.attempt import ResultsSummary


def to_naive_utc(value: datetime | None) -> datetime | None:
    """Timestamps are stored as naive UTC; convert aware inputs."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class AvailabilityStatus(str, Enum):
    """Where ``now`` falls relative to a test's availability window."""
    AVAILABLE = "available"
    UPCOMING = "upcoming"
    EXPIRED = "expired"


# ============================================================================
# Request Schemas
# ============================================================================

class SubjectTestCreate(BaseModel):
    """Schema for creating a test (always created as an unpublished draft)."""
    subject_id: int
    group_id: int | None = None
    topic_id: int | None = None
    curriculum_id: int | None = None

    title: Annotated[str, Field(min_length=1, max_length=255)]
    description: str | None = None
    instructions: str | None = None

    duration: Annotated[int, Field(ge=1, description="Time limit in minutes")] | None = None
    passing_score: Annotated[float, Field(ge=0, le=100)] | None = None
    attempt_limit: Annotated[int, Field(ge=1)] = 1

    randomize_questions: bool = False
    randomize_answers: bool = False
    show_correct_answers: bool = False
    allow_review: bool = True

    start_date: datetime | None = None
    end_date: datetime | None = None
    position: int = 0

    @field_validator("start_date", "end_date")
    @classmethod
    def normalize_dates(cls, v: datetime | None) -> datetime | None:
        return to_naive_utc(v)

    @model_validator(mode="after")
    def check_window(self) -> "SubjectTestCreate":
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class SubjectTestUpdate(BaseModel):
    """Schema for updating a test. Only supplied fields change."""
    subject_id: int | None = None
    group_id: int | None = None
    topic_id: int | None = None
    curriculum_id: int | None = None

    title: Annotated[str, Field(min_length=1, max_length=255)] | None = None
    description: str | None = None
    instructions: str | None = None

    duration: Annotated[int, Field(ge=1)] | None = None
    passing_score: Annotated[float, Field(ge=0, le=100)] | None = None
    attempt_limit: Annotated[int, Field(ge=1)] | None = None

    randomize_questions: bool | None = None
    randomize_answers: bool | None = None
    show_correct_answers: bool | None = None
    allow_review: bool | None = None

    start_date: datetime | None = None
    end_date: datetime | None = None
    position: int | None = None

    @field_validator("start_date", "end_date")
    @classmethod
    def normalize_dates(cls, v: datetime | None) -> datetime | None:
        return to_naive_utc(v)


# ============================================================================
# Response Schemas
# ============================================================================

class SubjectTestResponse(BaseModel):
    """Schema for test response."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    subject_id: int
    instructor_id: int
    group_id: int | None = None
    topic_id: int | None = None
    curriculum_id: int | None = None

    title: str
    description: str | None = None
    instructions: str | None = None

    duration: int | None = None
    passing_score: float | None = None
    max_score: float
    question_count: int
    attempt_limit: int

    randomize_questions: bool
    randomize_answers: bool
    show_correct_answers: bool
    allow_review: bool

    start_date: datetime | None = None
    end_date: datetime | None = None
    is_published: bool
    published_at: datetime | None = None
    position: int
    created_at: datetime
    updated_at: datetime

    is_available: bool
    is_expired: bool
    attempt_stats: ResultsSummary | None = None


class SubjectTestListResponse(BaseModel):
    """Paginated list of tests."""
    items: list[SubjectTestResponse]
    total: int
    page: int
    per_page: int
