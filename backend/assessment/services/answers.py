"""
University Assessment Engine - Answer Recorder
Record-or-replace a student's response while the attempt is open
"""
import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from assessment.core.database import utcnow
from assessment.core.security import Principal
from assessment.models.attempt import AttemptStatus, StudentAnswer, StudentAnswerSelection
from assessment.models.question import Question, QuestionType
from assessment.schemas.attempt import AnswerSubmit
from assessment.services.attempts import AttemptService, ensure_attempt_open
from assessment.services.exceptions import NotFoundError, ValidationFailure

logger = logging.getLogger(__name__)

# The response field each question type expects
RESPONSE_FIELD: dict[QuestionType, str] = {
    QuestionType.MULTIPLE_CHOICE: "selected_option_ids",
    QuestionType.TRUE_FALSE: "answer_boolean",
    QuestionType.SHORT_ANSWER: "answer_text",
    QuestionType.ESSAY: "answer_text",
}


def validate_response(question: Question, data: AnswerSubmit) -> AnswerSubmit:
    """
    Check a response against its question's type.

    Returns:
        The response with multiple-choice ids kept in the given order

    Raises:
        ValidationFailure: With one entry per offending field
    """
    expected = RESPONSE_FIELD[question.question_type]
    errors = {}

    for name in set(RESPONSE_FIELD.values()) - {expected}:
        if getattr(data, name) is not None:
            errors[name] = f"not applicable to {question.question_type.value} questions"

    value = getattr(data, expected)
    if value is None:
        errors[expected] = "required"
    elif question.question_type == QuestionType.MULTIPLE_CHOICE:
        active_ids = {option.id for option in question.active_options}
        if not value:
            errors[expected] = "select at least one option"
        elif len(set(value)) != len(value):
            errors[expected] = "contains duplicates"
        elif set(value) - active_ids:
            errors[expected] = f"unknown options {sorted(set(value) - active_ids)}"
        elif len(value) > 1 and not question.allow_multiple:
            errors[expected] = "question allows a single option"
    elif expected == "answer_text":
        if not value.strip():
            errors[expected] = "must not be blank"
        elif question.word_limit and len(value.split()) > question.word_limit:
            errors[expected] = f"exceeds the {question.word_limit} word limit"

    if errors:
        raise ValidationFailure(f"Invalid answer for question {question.id}", errors=errors)
    return data


class AnswerRecorder:
    """Service for recording responses on open attempts."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.attempts = AttemptService(db)

    async def _get_answer(self, attempt_id: int, question_id: int) -> StudentAnswer | None:
        result = await self.db.execute(
            select(StudentAnswer).where(
                StudentAnswer.attempt_id == attempt_id,
                StudentAnswer.question_id == question_id,
            )
        )
        return result.scalar_one_or_none()

    @staticmethod
    def _apply(answer: StudentAnswer, question: Question, data: AnswerSubmit) -> None:
        option_ids = data.selected_option_ids or []
        kept = {selection.option_id: selection for selection in answer.selections}
        answer.selections = [
            kept.get(option_id) or StudentAnswerSelection(option_id=option_id)
            for option_id in option_ids
        ]
        for position, selection in enumerate(answer.selections):
            selection.position = position

        answer.selected_option_id = (
            option_ids[0] if option_ids and not question.allow_multiple else None
        )
        answer.answer_boolean = data.answer_boolean
        answer.answer_text = data.answer_text
        answer.answered_at = utcnow()

    async def record_answer(
        self,
        principal: Principal,
        attempt_id: int,
        question_id: int,
        data: AnswerSubmit,
    ) -> StudentAnswer:
        """
        Record or replace the response to one question.

        Correctness is not computed here; that happens at submission.

        Raises:
            NotFoundError: If the attempt or question is not the student's
            InvalidStateError: If the attempt is closed or out of time
            ValidationFailure: If the response does not fit the question type
        """
        attempt, test = await self.attempts.get_own_attempt(principal, attempt_id)
        ensure_attempt_open(attempt, test, utcnow())

        result = await self.db.execute(
            select(Question).where(
                Question.id == question_id,
                Question.test_id == test.id,
                Question.active.is_(True),
            )
        )
        question = result.scalar_one_or_none()
        if not question:
            raise NotFoundError(f"Question {question_id} not found in test {test.id}")

        validate_response(question, data)

        answer = await self._get_answer(attempt.id, question.id)
        if answer is None:
            answer = StudentAnswer(attempt_id=attempt.id, question_id=question.id, selections=[])
            self._apply(answer, question, data)
            try:
                async with self.db.begin_nested():
                    self.db.add(answer)
            except IntegrityError:
                # A concurrent request created the row first; overwrite it
                logger.info(f"Answer slot ({attempt.id}, {question.id}) taken concurrently, updating")
                answer = await self._get_answer(attempt.id, question.id)
                self._apply(answer, question, data)

        else:
            self._apply(answer, question, data)

        if attempt.status == AttemptStatus.STARTED:
            attempt.status = AttemptStatus.IN_PROGRESS

        await self.db.flush()
        return answer
