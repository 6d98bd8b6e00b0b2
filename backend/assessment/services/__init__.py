"""University Assessment Engine - Services initialization."""
from assessment.services.exceptions import (
    AssessmentError,
    ConflictError,
    DependencyFailure,
    InvalidStateError,
    LimitExceededError,
    NotFoundError,
    ValidationFailure,
)
from assessment.services.catalog import CatalogService
from assessment.services.question_bank import QuestionBankService
from assessment.services.attempts import AttemptService
from assessment.services.answers import AnswerRecorder
from assessment.services.grading import GradingService
from assessment.services.scoring import GradeBand, GradingPolicy

__all__ = [
    "CatalogService",
    "QuestionBankService",
    "AttemptService",
    "AnswerRecorder",
    "GradingService",
    "GradeBand",
    "GradingPolicy",
    "AssessmentError",
    "NotFoundError",
    "InvalidStateError",
    "LimitExceededError",
    "ValidationFailure",
    "ConflictError",
    "DependencyFailure",
]
