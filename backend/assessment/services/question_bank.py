"""
University Assessment Engine - Question Bank Service
Questions and answer options of a test, kept consistent with the test's aggregates
"""
import logging
from dataclasses import dataclass

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from assessment.core.security import Principal
from assessment.models.attempt import StudentAnswer, StudentAttempt
from assessment.models.question import AnswerOption, Question, QuestionType
from assessment.models.test import SubjectTest
from assessment.schemas.question import (
    AnswerOptionCreate,
    AnswerOptionUpdate,
    QuestionCreate,
    QuestionUpdate,
)
from assessment.services.catalog import CatalogService, copy_question, recompute_test_aggregates
from assessment.services.exceptions import InvalidStateError, NotFoundError, ValidationFailure

logger = logging.getLogger(__name__)

# Which type-specific columns belong to which question type
TYPE_SPECIFIC_FIELDS: dict[QuestionType, frozenset[str]] = {
    QuestionType.MULTIPLE_CHOICE: frozenset({"allow_multiple"}),
    QuestionType.TRUE_FALSE: frozenset({"correct_answer_boolean"}),
    QuestionType.SHORT_ANSWER: frozenset({"correct_answer_text", "case_sensitive"}),
    QuestionType.ESSAY: frozenset({"word_limit"}),
}
ALL_TYPE_SPECIFIC_FIELDS = frozenset().union(*TYPE_SPECIFIC_FIELDS.values())

# Fields that may be omitted but never explicitly nulled
_NON_NULLABLE_FIELDS = frozenset({
    "question_text", "points", "position", "is_required",
    "allow_multiple", "correct_answer_boolean", "correct_answer_text", "case_sensitive",
})


@dataclass
class QuestionStatistics:
    """Answers to one question across submitted attempts."""
    total_answers: int = 0
    correct_answers: int = 0
    incorrect_answers: int = 0
    pending_answers: int = 0
    average_points: float = 0.0

    @property
    def correct_percentage(self) -> float:
        if not self.total_answers:
            return 0.0
        return round(self.correct_answers / self.total_answers * 100, 2)


class QuestionBankService:
    """Service for authoring the questions of a test."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.catalog = CatalogService(db)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _next_position(self, test_id: int) -> int:
        current = await self.db.scalar(
            select(func.max(Question.position)).where(
                Question.test_id == test_id,
                Question.active.is_(True),
            )
        )
        return 0 if current is None else current + 1

    async def _get_question(self, test: SubjectTest, question_id: int) -> Question:
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
        return question

    @staticmethod
    def _get_option(question: Question, option_id: int) -> AnswerOption:
        for option in question.active_options:
            if option.id == option_id:
                return option
        raise NotFoundError(f"Option {option_id} not found in question {question.id}")

    @staticmethod
    def _check_single_correct(question: Question, allow_multiple: bool, correct_count: int) -> None:
        if not allow_multiple and correct_count > 1:
            raise ValidationFailure(
                f"Question {question.id or 'new'} allows a single answer but has {correct_count} correct options",
                errors={"is_correct": "single-select questions may have at most one correct option"},
            )

    # ------------------------------------------------------------------
    # Questions
    # ------------------------------------------------------------------

    async def list_questions(self, principal: Principal, test_id: int) -> list[Question]:
        """Active questions of a test in position order (instructor view)."""
        test = await self.catalog.get_owned_test(principal, test_id)
        result = await self.db.execute(
            select(Question)
            .where(Question.test_id == test.id, Question.active.is_(True))
            .order_by(Question.position, Question.id)
        )
        return list(result.scalars().all())

    async def get_question(self, principal: Principal, test_id: int, question_id: int) -> Question:
        test = await self.catalog.get_owned_test(principal, test_id)
        return await self._get_question(test, question_id)

    async def question_statistics(self, question_ids: list[int]) -> dict[int, QuestionStatistics]:
        """
        Answer statistics per question, counted over submitted attempts only.

        Answers still waiting for a manual grade count as pending, not
        incorrect. Questions nobody has answered get empty statistics.
        """
        statistics = {question_id: QuestionStatistics() for question_id in question_ids}
        if not question_ids:
            return statistics

        await self.db.flush()
        result = await self.db.execute(
            select(
                StudentAnswer.question_id,
                func.count(StudentAnswer.id),
                func.sum(case((StudentAnswer.is_correct.is_(True), 1), else_=0)),
                func.sum(case((StudentAnswer.is_correct.is_(False), 1), else_=0)),
                func.avg(StudentAnswer.points_earned),
            )
            .join(StudentAttempt, StudentAttempt.id == StudentAnswer.attempt_id)
            .where(
                StudentAnswer.question_id.in_(question_ids),
                StudentAttempt.submitted_at.is_not(None),
            )
            .group_by(StudentAnswer.question_id)
        )
        for question_id, total, correct, incorrect, average in result.all():
            correct = int(correct or 0)
            incorrect = int(incorrect or 0)
            statistics[question_id] = QuestionStatistics(
                total_answers=total,
                correct_answers=correct,
                incorrect_answers=incorrect,
                pending_answers=total - correct - incorrect,
                average_points=round(float(average), 2) if average is not None else 0.0,
            )
        return statistics

    async def add_question(
        self,
        principal: Principal,
        test_id: int,
        data: QuestionCreate,
    ) -> Question:
        """
        Add a question (multiple choice may carry its options inline).

        Raises:
            NotFoundError: If the test is not the principal's
            ValidationFailure: If a single-select question gets several correct options
        """
        test = await self.catalog.get_owned_test(principal, test_id)
        question_type = QuestionType(data.question_type)

        fields = data.model_dump(exclude={"question_type", "options", "position"})
        position = data.position if data.position is not None else await self._next_position(test.id)
        question = Question(
            test_id=test.id,
            question_type=question_type,
            position=position,
            options=[],
            **fields,
        )

        if question_type == QuestionType.MULTIPLE_CHOICE:
            self._check_single_correct(
                question,
                data.allow_multiple,
                sum(1 for option in data.options if option.is_correct),
            )
            question.options = [
                AnswerOption(
                    answer_text=option.answer_text,
                    image_path=option.image_path,
                    position=option.position if option.position is not None else index,
                    is_correct=option.is_correct,
                )
                for index, option in enumerate(data.options)
            ]

        self.db.add(question)
        await recompute_test_aggregates(self.db, test)

        logger.info(f"Question {question.id} ({question_type.value}) added to test {test.id}")
        return question

    async def update_question(
        self,
        principal: Principal,
        test_id: int,
        question_id: int,
        data: QuestionUpdate,
    ) -> Question:
        """
        Update a question. The type is immutable and type-specific fields
        must belong to it.

        Raises:
            ValidationFailure: On a type change, foreign type-specific fields,
                or a single-select question left with several correct options
        """
        test = await self.catalog.get_owned_test(principal, test_id)
        question = await self._get_question(test, question_id)
        changes = data.model_dump(exclude_unset=True)

        requested_type = changes.pop("question_type", None)
        if requested_type is not None and requested_type != question.question_type:
            raise ValidationFailure(
                "Question type cannot be changed",
                errors={"question_type": "immutable"},
            )

        errors = {}
        allowed = TYPE_SPECIFIC_FIELDS[question.question_type]
        for name in (set(changes) & ALL_TYPE_SPECIFIC_FIELDS) - allowed:
            errors[name] = f"not applicable to {question.question_type.value} questions"
        for name in set(changes) & _NON_NULLABLE_FIELDS:
            if changes[name] is None:
                errors[name] = "may not be null"
        if errors:
            raise ValidationFailure("Invalid question update", errors=errors)

        if changes.get("allow_multiple") is False:
            self._check_single_correct(
                question,
                False,
                sum(1 for option in question.active_options if option.is_correct),
            )

        for name, value in changes.items():
            setattr(question, name, value)

        if "points" in changes:
            await recompute_test_aggregates(self.db, test)
        else:
            await self.db.flush()
        return question

    async def remove_question(self, principal: Principal, test_id: int, question_id: int) -> None:
        """Soft-remove a question and shrink the test's aggregates."""
        test = await self.catalog.get_owned_test(principal, test_id)
        question = await self._get_question(test, question_id)

        question.active = False
        await recompute_test_aggregates(self.db, test)
        logger.info(f"Question {question.id} removed from test {test.id}")

    async def reorder_questions(
        self,
        principal: Principal,
        test_id: int,
        question_ids: list[int],
    ) -> list[Question]:
        """
        Assign positions 0..N-1 following ``question_ids``.

        Raises:
            ValidationFailure: Unless the ids are exactly the test's active questions
        """
        test = await self.catalog.get_owned_test(principal, test_id)
        result = await self.db.execute(
            select(Question).where(Question.test_id == test.id, Question.active.is_(True))
        )
        questions = {question.id: question for question in result.scalars().all()}

        errors = {}
        if len(set(question_ids)) != len(question_ids):
            errors["question_ids"] = "contains duplicates"
        unknown = sorted(set(question_ids) - set(questions))
        if unknown:
            errors["unknown"] = unknown
        missing = sorted(set(questions) - set(question_ids))
        if missing:
            errors["missing"] = missing
        if errors:
            raise ValidationFailure("Reorder must list every active question exactly once", errors=errors)

        for position, question_id in enumerate(question_ids):
            questions[question_id].position = position

        await self.db.flush()
        return [questions[question_id] for question_id in question_ids]

    async def duplicate_question(self, principal: Principal, test_id: int, question_id: int) -> Question:
        """Copy a question with its active options to the end of the same test."""
        test = await self.catalog.get_owned_test(principal, test_id)
        source = await self._get_question(test, question_id)

        clone = copy_question(source, test.id)
        clone.position = await self._next_position(test.id)
        self.db.add(clone)
        await recompute_test_aggregates(self.db, test)

        logger.info(f"Question {source.id} duplicated as {clone.id} in test {test.id}")
        return clone

    # ------------------------------------------------------------------
    # Answer options
    # ------------------------------------------------------------------

    async def add_option(
        self,
        principal: Principal,
        test_id: int,
        question_id: int,
        data: AnswerOptionCreate,
    ) -> AnswerOption:
        """
        Add an option to a multiple-choice question.

        Raises:
            InvalidStateError: If the question is not multiple choice
            ValidationFailure: If it would give a single-select question a second correct option
        """
        test = await self.catalog.get_owned_test(principal, test_id)
        question = await self._get_question(test, question_id)
        if question.question_type != QuestionType.MULTIPLE_CHOICE:
            raise InvalidStateError(
                f"Question {question.id} is {question.question_type.value} and has no options"
            )

        active = question.active_options
        if data.is_correct:
            self._check_single_correct(
                question,
                question.allow_multiple,
                sum(1 for option in active if option.is_correct) + 1,
            )

        position = data.position
        if position is None:
            position = max((option.position for option in active), default=-1) + 1

        option = AnswerOption(
            answer_text=data.answer_text,
            image_path=data.image_path,
            position=position,
            is_correct=data.is_correct,
        )
        question.options.append(option)
        await self.db.flush()
        return option

    async def update_option(
        self,
        principal: Principal,
        test_id: int,
        question_id: int,
        option_id: int,
        data: AnswerOptionUpdate,
    ) -> AnswerOption:
        test = await self.catalog.get_owned_test(principal, test_id)
        question = await self._get_question(test, question_id)
        option = self._get_option(question, option_id)
        changes = data.model_dump(exclude_unset=True)

        for name in ("answer_text", "position", "is_correct"):
            if name in changes and changes[name] is None:
                raise ValidationFailure("Invalid option update", errors={name: "may not be null"})

        if changes.get("is_correct") and not option.is_correct:
            self._check_single_correct(
                question,
                question.allow_multiple,
                sum(1 for other in question.active_options if other.is_correct) + 1,
            )

        for name, value in changes.items():
            setattr(option, name, value)

        await self.db.flush()
        return option

    async def remove_option(
        self,
        principal: Principal,
        test_id: int,
        question_id: int,
        option_id: int,
    ) -> None:
        test = await self.catalog.get_owned_test(principal, test_id)
        question = await self._get_question(test, question_id)
        option = self._get_option(question, option_id)

        option.active = False
        await self.db.flush()
