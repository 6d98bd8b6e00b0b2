"""University Assessment Engine - Models initialization."""
from assessment.models.test import SubjectTest
from assessment.models.question import AnswerOption, Question, QuestionType
from assessment.models.attempt import (
    AttemptStatus,
    StudentAnswer,
    StudentAnswerSelection,
    StudentAttempt,
)


__all__ = [
    # Test catalog
    "SubjectTest",
    # Question bank
    "Question",
    "QuestionType",
    "AnswerOption",
    # Attempts & answers
    "StudentAttempt",
    "StudentAnswer",
    "StudentAnswerSelection",
    "AttemptStatus",
]
