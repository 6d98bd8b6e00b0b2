"""
University Assessment Engine - Test Catalog Service
Test metadata, visibility, derived aggregates and the publish gate
"""
import logging
from datetime import datetime

from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from assessment.core.database import utcnow
from assessment.core.security import Principal, PrincipalRole
from assessment.models.attempt import StudentAttempt
from assessment.models.question import AnswerOption, Question
from assessment.models.test import SubjectTest
from assessment.schemas.test import AvailabilityStatus, SubjectTestCreate, SubjectTestUpdate
from assessment.services.exceptions import (
    ConflictError,
    InvalidStateError,
    NotFoundError,
    ValidationFailure,
)

logger = logging.getLogger(__name__)

COPY_SUFFIX = " (Copy)"

# Columns copied verbatim when a test is duplicated
_TEST_COPY_FIELDS = (
    "subject_id", "instructor_id", "group_id", "topic_id", "curriculum_id",
    "description", "instructions", "duration", "passing_score", "attempt_limit",
    "randomize_questions", "randomize_answers", "show_correct_answers",
    "allow_review", "start_date", "end_date", "position",
)

_QUESTION_COPY_FIELDS = (
    "question_text", "question_type", "points", "position", "is_required",
    "explanation", "image_path", "allow_multiple", "correct_answer_boolean",
    "correct_answer_text", "case_sensitive", "word_limit",
)

_OPTION_COPY_FIELDS = ("answer_text", "image_path", "position", "is_correct")

_NON_NULLABLE_FIELDS = (
    "subject_id", "title", "attempt_limit", "position", "randomize_questions",
    "randomize_answers", "show_correct_answers", "allow_review",
)


def copy_question(question: Question, test_id: int) -> Question:
    """Fresh question row with the same content and copies of its active options."""
    clone = Question(test_id=test_id, **{name: getattr(question, name) for name in _QUESTION_COPY_FIELDS})
    clone.options = [
        AnswerOption(**{name: getattr(option, name) for name in _OPTION_COPY_FIELDS})
        for option in question.active_options
    ]
    return clone


async def recompute_test_aggregates(db: AsyncSession, test: SubjectTest) -> SubjectTest:
    """
    Recompute ``max_score`` and ``question_count`` from the active questions.

    Must run in the same transaction as the change that triggered it.
    """
    await db.flush()
    result = await db.execute(
        select(
            func.coalesce(func.sum(Question.points), 0.0),
            func.count(Question.id),
        ).where(Question.test_id == test.id, Question.active.is_(True))
    )
    total_points, count = result.one()
    test.max_score = float(total_points)
    test.question_count = int(count)
    await db.flush()
    return test


class CatalogService:
    """Service for test authoring, listing and publishing."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ------------------------------------------------------------------
    # Lookup & visibility
    # ------------------------------------------------------------------

    async def get_test(self, principal: Principal, test_id: int) -> SubjectTest:
        """
        Get a test the principal may see.

        Students see active published tests, instructors their own active
        tests, admins every active test.

        Raises:
            NotFoundError: If the test is missing or not visible
        """
        test = await self.db.get(SubjectTest, test_id)
        if not test or not test.active:
            raise NotFoundError(f"Test {test_id} not found")

        if principal.role == PrincipalRole.STUDENT and not test.is_published:
            raise NotFoundError(f"Test {test_id} not found")
        if principal.role == PrincipalRole.INSTRUCTOR and test.instructor_id != principal.id:
            raise NotFoundError(f"Test {test_id} not found")

        return test

    async def get_owned_test(self, principal: Principal, test_id: int) -> SubjectTest:
        """
        Get a test the principal may change (its instructor, or an admin).

        Raises:
            NotFoundError: If the test is missing or owned by someone else
        """
        test = await self.db.get(SubjectTest, test_id)
        if not test or not test.active:
            raise NotFoundError(f"Test {test_id} not found")
        if not principal.is_admin and test.instructor_id != principal.id:
            raise NotFoundError(f"Test {test_id} not found")
        return test

    async def list_tests(
        self,
        principal: Principal,
        subject_id: int | None = None,
        group_id: int | None = None,
        instructor_id: int | None = None,
        is_published: bool | None = None,
        availability: AvailabilityStatus | None = None,
        page: int = 1,
        per_page: int = 20,
        now: datetime | None = None,
    ) -> tuple[list[SubjectTest], int]:
        """
        List tests visible to the principal.

        Returns:
            Tuple of (page of tests, total matching)
        """
        now = now or utcnow()
        conditions = [SubjectTest.active.is_(True)]

        if principal.role == PrincipalRole.STUDENT:
            conditions.append(SubjectTest.is_published.is_(True))
        elif principal.role == PrincipalRole.INSTRUCTOR:
            conditions.append(SubjectTest.instructor_id == principal.id)

        if subject_id is not None:
            conditions.append(SubjectTest.subject_id == subject_id)
        if group_id is not None:
            conditions.append(SubjectTest.group_id == group_id)
        if instructor_id is not None:
            conditions.append(SubjectTest.instructor_id == instructor_id)
        if is_published is not None:
            conditions.append(SubjectTest.is_published.is_(is_published))

        if availability == AvailabilityStatus.UPCOMING:
            conditions.append(SubjectTest.start_date > now)
        elif availability == AvailabilityStatus.EXPIRED:
            conditions.append(SubjectTest.end_date < now)
        elif availability == AvailabilityStatus.AVAILABLE:
            conditions.append(or_(SubjectTest.start_date.is_(None), SubjectTest.start_date <= now))
            conditions.append(or_(SubjectTest.end_date.is_(None), SubjectTest.end_date >= now))

        where = and_(*conditions)
        total = await self.db.scalar(select(func.count(SubjectTest.id)).where(where))

        result = await self.db.execute(
            select(SubjectTest)
            .where(where)
            .order_by(SubjectTest.position, SubjectTest.id)
            .offset((page - 1) * per_page)
            .limit(per_page)
        )
        return list(result.scalars().all()), total or 0

    # ------------------------------------------------------------------
    # Authoring
    # ------------------------------------------------------------------

    async def create_test(self, principal: Principal, data: SubjectTestCreate) -> SubjectTest:
        """Create an unpublished draft owned by the principal."""
        test = SubjectTest(
            instructor_id=principal.id,
            max_score=0.0,
            question_count=0,
            is_published=False,
            **data.model_dump(),
        )
        self.db.add(test)
        await self.db.flush()

        logger.info(f"Test {test.id} created by instructor {principal.id}")
        return test

    async def update_test(
        self,
        principal: Principal,
        test_id: int,
        data: SubjectTestUpdate,
    ) -> SubjectTest:
        """
        Apply the supplied fields to a test.

        Raises:
            NotFoundError: If the test is not the principal's
            ValidationFailure: If the resulting window is inverted
        """
        test = await self.get_owned_test(principal, test_id)
        changes = data.model_dump(exclude_unset=True)

        for name in _NON_NULLABLE_FIELDS:
            if name in changes and changes[name] is None:
                raise ValidationFailure(
                    "Invalid test update",
                    errors={name: "may not be null"},
                )

        start_date = changes.get("start_date", test.start_date)
        end_date = changes.get("end_date", test.end_date)
        if start_date and end_date and end_date < start_date:
            raise ValidationFailure(
                "Invalid availability window",
                errors={"end_date": "must not be before start_date"},
            )

        for name, value in changes.items():
            setattr(test, name, value)

        await self.db.flush()
        return test

    async def delete_test(self, principal: Principal, test_id: int) -> None:
        """
        Soft-delete a test.

        Raises:
            ConflictError: If any attempt on the test was submitted
        """
        test = await self.get_owned_test(principal, test_id)

        submitted = await self.db.scalar(
            select(func.count(StudentAttempt.id)).where(
                StudentAttempt.test_id == test.id,
                StudentAttempt.submitted_at.is_not(None),
            )
        )
        if submitted:
            raise ConflictError(
                f"Test {test_id} has {submitted} submitted attempt(s) and cannot be deleted"
            )

        test.active = False
        await self.db.flush()
        logger.info(f"Test {test.id} deleted by {principal.role.value} {principal.id}")

    async def duplicate_test(self, principal: Principal, test_id: int) -> SubjectTest:
        """
        Deep-copy a test with its active questions and options.

        The copy is an unpublished draft with the same owner.
        """
        source = await self.get_owned_test(principal, test_id)

        clone = SubjectTest(
            title=f"{source.title}{COPY_SUFFIX}"[:255],
            is_published=False,
            published_at=None,
            max_score=0.0,
            question_count=0,
            **{name: getattr(source, name) for name in _TEST_COPY_FIELDS},
        )
        self.db.add(clone)
        await self.db.flush()

        result = await self.db.execute(
            select(Question)
            .where(Question.test_id == source.id, Question.active.is_(True))
            .order_by(Question.position, Question.id)
        )
        for question in result.scalars().all():
            self.db.add(copy_question(question, clone.id))

        await recompute_test_aggregates(self.db, clone)
        logger.info(f"Test {source.id} duplicated as {clone.id}")
        return clone

    # ------------------------------------------------------------------
    # Publish gate
    # ------------------------------------------------------------------

    async def publish_test(self, principal: Principal, test_id: int) -> SubjectTest:
        """
        Publish a draft test.

        Raises:
            InvalidStateError: If already published or without active questions
        """
        test = await self.get_owned_test(principal, test_id)
        if test.is_published:
            raise InvalidStateError(f"Test {test_id} is already published")

        await recompute_test_aggregates(self.db, test)
        if test.question_count == 0:
            raise InvalidStateError(f"Test {test_id} has no active questions")

        test.is_published = True
        test.published_at = utcnow()
        await self.db.flush()

        logger.info(f"Test {test.id} published ({test.question_count} questions, max {test.max_score})")
        return test

    async def unpublish_test(self, principal: Principal, test_id: int) -> SubjectTest:
        """
        Take a published test back to draft. ``published_at`` is kept.

        Raises:
            InvalidStateError: If the test is not published
        """
        test = await self.get_owned_test(principal, test_id)
        if not test.is_published:
            raise InvalidStateError(f"Test {test_id} is not published")

        test.is_published = False
        await self.db.flush()

        logger.info(f"Test {test.id} unpublished")
        return test
