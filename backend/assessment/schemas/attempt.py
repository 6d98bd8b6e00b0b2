"""
University Assessment Engine - Attempt Schemas
Pydantic schemas for attempts, answers, the question paper and grading
"""
from datetime import datetime
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field

from assessment.models.attempt import AttemptStatus
from assessment.models.question import QuestionType


# ============================================================================
# Answers
# ============================================================================

class AnswerSubmit(BaseModel):
    """
    Response to one question. Supply exactly the field matching the
    question type: ``selected_option_ids`` (multiple choice),
    ``answer_boolean`` (true/false) or ``answer_text`` (short answer, essay).
    """
    selected_option_ids: list[int] | None = None
    answer_boolean: bool | None = None
    answer_text: str | None = None


class CorrectAnswer(BaseModel):
    """Answer key of a question, revealed on review when the test allows it."""
    correct_option_ids: list[int] = []
    correct_answer_boolean: bool | None = None
    correct_answer_text: str | None = None
    explanation: str | None = None


class AnswerResponse(BaseModel):
    """Schema for a recorded answer."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    question_id: int
    selected_option_ids: list[int] = []
    answer_text: str | None = None
    answer_boolean: bool | None = None
    answered_at: datetime | None = None

    points_earned: float | None = None
    points_possible: float = 0.0
    is_correct: bool | None = None
    manually_graded: bool = False
    graded_at: datetime | None = None
    feedback: str | None = None

    correct_answer: CorrectAnswer | None = None


# ============================================================================
# Attempts
# ============================================================================

class AttemptResponse(BaseModel):
    """Schema for attempt response."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    test_id: int
    student_id: int
    attempt_number: int
    status: AttemptStatus

    started_at: datetime
    submitted_at: datetime | None = None
    graded_at: datetime | None = None
    duration_seconds: int | None = None

    total_score: float | None = None
    max_score: float | None = None
    percentage: float | None = None
    passed: bool | None = None
    letter_grade: str | None = None
    numeric_grade: str | None = None
    auto_graded_score: float | None = None
    manual_graded_score: float | None = None
    feedback: str | None = None


class AttemptDetailResponse(AttemptResponse):
    """Attempt with its answers, when the caller may see them."""
    answers: list[AnswerResponse] | None = None


# ============================================================================
# Question Paper (student view, no answer keys)
# ============================================================================

class PaperOption(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    answer_text: str
    image_path: str | None = None


class PaperQuestion(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    question_text: str
    question_type: QuestionType
    points: float
    is_required: bool
    image_path: str | None = None
    allow_multiple: bool
    word_limit: int | None = None
    options: list[PaperOption] = []


class QuestionPaper(BaseModel):
    """The questions of an open attempt, in the order the student sees them."""
    attempt_id: int
    test_id: int
    title: str
    instructions: str | None = None
    duration: int | None = None
    started_at: datetime
    deadline: datetime | None = None
    questions: list[PaperQuestion]


# ============================================================================
# Grading
# ============================================================================

class GradeEntry(BaseModel):
    """Instructor-assigned points for one answer."""
    answer_id: int
    points_earned: Annotated[float, Field(ge=0)]
    feedback: str | None = None


class GradeRequest(BaseModel):
    """Schema for a grading pass over an attempt."""
    grades: list[GradeEntry] = []
    feedback: str | None = None


# ============================================================================
# Results & Sweep
# ============================================================================

class ResultsSummary(BaseModel):
    """Statistics over the submitted attempts of a test."""
    model_config = ConfigDict(from_attributes=True)

    total: int
    graded: int
    pending_grading: int
    average_percentage: float | None = None
    average_score: float | None = None
    pass_rate: float | None = None


class ResultsResponse(BaseModel):
    """Paginated attempts of a test with a summary over the whole filtered set."""
    items: list[AttemptResponse]
    total: int
    page: int
    per_page: int
    summary: ResultsSummary


class StudentAttemptsResponse(BaseModel):
    """A student's own attempts on one test and what is left of the limit."""
    test_id: int
    attempt_limit: int
    attempts_count: int
    remaining_attempts: int
    best_percentage: float | None = None
    can_attempt: bool
    items: list[AttemptResponse]


class SweepResponse(BaseModel):
    abandoned: int
