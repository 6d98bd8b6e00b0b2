"""
University Assessment Engine - Question Schemas
Pydantic schemas for the question bank (instructor view, includes answer keys)
"""
from datetime import datetime
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from assessment.models.question import QuestionType


# ============================================================================
# Answer Options
# ============================================================================

class AnswerOptionCreate(BaseModel):
    """Schema for adding an option to a multiple-choice question."""
    answer_text: Annotated[str, Field(min_length=1)]
    image_path: str | None = None
    position: int | None = None
    is_correct: bool = False


class AnswerOptionUpdate(BaseModel):
    """Schema for updating an option."""
    answer_text: Annotated[str, Field(min_length=1)] | None = None
    image_path: str | None = None
    position: int | None = None
    is_correct: bool | None = None


class AnswerOptionResponse(BaseModel):
    """Schema for option response."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    question_id: int
    answer_text: str
    image_path: str | None = None
    position: int
    is_correct: bool
    active: bool


# ============================================================================
# Question Create (discriminated on question_type)
# ============================================================================

class QuestionCreateBase(BaseModel):
    """Fields shared by every question type."""
    question_text: Annotated[str, Field(min_length=1)]
    points: Annotated[float, Field(ge=0)] = 1.0
    position: int | None = None
    is_required: bool = False
    explanation: str | None = None
    image_path: str | None = None


class MultipleChoiceQuestionCreate(QuestionCreateBase):
    question_type: Literal["multiple_choice"]
    allow_multiple: bool = False
    options: list[AnswerOptionCreate] = []


class TrueFalseQuestionCreate(QuestionCreateBase):
    question_type: Literal["true_false"]
    correct_answer_boolean: bool


class ShortAnswerQuestionCreate(QuestionCreateBase):
    question_type: Literal["short_answer"]
    correct_answer_text: Annotated[str, Field(min_length=1)]
    case_sensitive: bool = False


class EssayQuestionCreate(QuestionCreateBase):
    question_type: Literal["essay"]
    word_limit: Annotated[int, Field(ge=1)] | None = None


QuestionCreate = Annotated[
    Union[
        MultipleChoiceQuestionCreate,
        TrueFalseQuestionCreate,
        ShortAnswerQuestionCreate,
        EssayQuestionCreate,
    ],
    Field(discriminator="question_type"),
]


# ============================================================================
# Question Update / Reorder
# ============================================================================

class QuestionUpdate(BaseModel):
    """
    Schema for updating a question.

    ``question_type`` may be echoed back but never changed; type-specific
    fields must belong to the question's existing type.
    """
    question_type: QuestionType | None = None
    question_text: Annotated[str, Field(min_length=1)] | None = None
    points: Annotated[float, Field(ge=0)] | None = None
    position: int | None = None
    is_required: bool | None = None
    explanation: str | None = None
    image_path: str | None = None

    # Type-specific
    allow_multiple: bool | None = None
    correct_answer_boolean: bool | None = None
    correct_answer_text: Annotated[str, Field(min_length=1)] | None = None
    case_sensitive: bool | None = None
    word_limit: Annotated[int, Field(ge=1)] | None = None


class QuestionReorder(BaseModel):
    """Full ordered list of the test's active question ids."""
    question_ids: list[int]


# ============================================================================
# Response Schemas
# ============================================================================

class QuestionStatisticsResponse(BaseModel):
    """How a question fared across submitted attempts."""
    model_config = ConfigDict(from_attributes=True)

    total_answers: int = 0
    correct_answers: int = 0
    incorrect_answers: int = 0
    pending_answers: int = 0
    correct_percentage: float = 0.0
    average_points: float = 0.0


class QuestionResponse(BaseModel):
    """Schema for question response (instructor view)."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    test_id: int
    question_text: str
    question_type: QuestionType
    points: float
    position: int
    is_required: bool
    explanation: str | None = None
    image_path: str | None = None

    allow_multiple: bool
    correct_answer_boolean: bool | None = None
    correct_answer_text: str | None = None
    case_sensitive: bool
    word_limit: int | None = None

    active: bool
    options: list[AnswerOptionResponse] = Field(default=[], validation_alias="active_options")
    created_at: datetime
    updated_at: datetime
    statistics: QuestionStatisticsResponse | None = None
