"""
University Assessment Engine - Attempt Lifecycle Service
Starting, reading, submitting and abandoning student attempts
"""
import logging
import random
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from assessment.core.config import settings
from assessment.core.database import utcnow
from assessment.core.security import Principal, PrincipalRole
from assessment.models.attempt import AttemptStatus, StudentAnswer, StudentAttempt
from assessment.models.question import AnswerOption, Question
from assessment.models.test import SubjectTest
from assessment.services.catalog import CatalogService
from assessment.services.exceptions import (
    ConflictError,
    InvalidStateError,
    LimitExceededError,
    NotFoundError,
)
from assessment.services.scoring import (
    AttemptTotals,
    GradingPolicy,
    Response,
    aggregate,
    answer_key_for,
    score_response,
)

logger = logging.getLogger(__name__)


def attempt_deadline(attempt: StudentAttempt, test: SubjectTest) -> datetime | None:
    """Moment after which an open attempt can no longer be answered or submitted."""
    if test.duration is None:
        return None
    return attempt.started_at + timedelta(
        minutes=test.duration,
        seconds=settings.ATTEMPT_GRACE_SECONDS,
    )


def ensure_attempt_open(attempt: StudentAttempt, test: SubjectTest, now: datetime) -> None:
    """
    Raises:
        InvalidStateError: If the attempt is closed or past its time limit
    """
    if not attempt.status.is_open:
        raise InvalidStateError(
            f"Attempt {attempt.id} is {attempt.status.value}",
            errors={"status": attempt.status.value},
        )
    deadline = attempt_deadline(attempt, test)
    if deadline is not None and now > deadline:
        raise InvalidStateError(
            f"Attempt {attempt.id} ran out of time",
            errors={"deadline": deadline.isoformat()},
        )


@dataclass
class AttemptDetail:
    """An attempt together with what the caller may see of its answers."""
    attempt: StudentAttempt
    test: SubjectTest
    answers: list[StudentAnswer] | None = None
    answer_keys: dict[int, Question] = field(default_factory=dict)


@dataclass
class PaperItem:
    """One question of the paper with its options in display order."""
    question: Question
    options: list[AnswerOption]


@dataclass
class QuestionPaperView:
    attempt: StudentAttempt
    test: SubjectTest
    items: list[PaperItem]


@dataclass
class AttemptStatistics:
    """Summary over submitted attempts; open and abandoned ones never count."""
    total: int = 0
    graded: int = 0
    pending_grading: int = 0
    average_percentage: float | None = None
    average_score: float | None = None
    pass_rate: float | None = None

    @classmethod
    def from_rows(cls, rows) -> "AttemptStatistics":
        """Build from ``(status, total_score, percentage, passed)`` rows."""
        percentages = [row.percentage for row in rows if row.percentage is not None]
        scores = [row.total_score for row in rows if row.total_score is not None]
        verdicts = [row.passed for row in rows if row.passed is not None]
        return cls(
            total=len(rows),
            graded=sum(1 for row in rows if row.status == AttemptStatus.GRADED),
            pending_grading=sum(1 for row in rows if row.status == AttemptStatus.SUBMITTED),
            average_percentage=round(sum(percentages) / len(percentages), 2) if percentages else None,
            average_score=round(sum(scores) / len(scores), 2) if scores else None,
            pass_rate=(
                round(sum(1 for verdict in verdicts if verdict) / len(verdicts) * 100, 2)
                if verdicts else None
            ),
        )


@dataclass
class ResultsPage:
    attempts: list[StudentAttempt]
    statistics: AttemptStatistics


@dataclass
class OwnAttempts:
    """A student's attempts on one test and what remains of the attempt limit."""
    test: SubjectTest
    attempts: list[StudentAttempt]

    @property
    def attempts_count(self) -> int:
        return len(self.attempts)

    @property
    def remaining_attempts(self) -> int:
        return max(self.test.attempt_limit - self.attempts_count, 0)

    @property
    def best_percentage(self) -> float | None:
        scored = [attempt.percentage for attempt in self.attempts if attempt.percentage is not None]
        return max(scored) if scored else None

    @property
    def can_attempt(self) -> bool:
        return self.remaining_attempts > 0 and self.test.is_available


class AttemptService:
    """Service for the attempt lifecycle."""

    def __init__(self, db: AsyncSession, policy: GradingPolicy | None = None):
        self.db = db
        self.policy = policy or GradingPolicy.from_settings()

    # ------------------------------------------------------------------
    # Lookup & access
    # ------------------------------------------------------------------

    async def _load_attempt(self, attempt_id: int, for_update: bool = False) -> StudentAttempt:
        query = select(StudentAttempt).where(StudentAttempt.id == attempt_id)
        if for_update:
            query = query.with_for_update()
        attempt = (await self.db.execute(query)).scalar_one_or_none()
        if not attempt:
            raise NotFoundError(f"Attempt {attempt_id} not found")
        return attempt

    async def get_accessible_attempt(
        self,
        principal: Principal,
        attempt_id: int,
        for_update: bool = False,
    ) -> tuple[StudentAttempt, SubjectTest]:
        """
        Load an attempt the principal may read: a student's own, an
        instructor's test's, or any for an admin.

        Raises:
            NotFoundError: If missing or not visible
        """
        attempt = await self._load_attempt(attempt_id, for_update=for_update)
        test = await self.db.get(SubjectTest, attempt.test_id)

        if principal.role == PrincipalRole.STUDENT and attempt.student_id != principal.id:
            raise NotFoundError(f"Attempt {attempt_id} not found")
        if principal.role == PrincipalRole.INSTRUCTOR and test.instructor_id != principal.id:
            raise NotFoundError(f"Attempt {attempt_id} not found")
        return attempt, test

    async def get_own_attempt(
        self,
        principal: Principal,
        attempt_id: int,
        for_update: bool = False,
    ) -> tuple[StudentAttempt, SubjectTest]:
        """Load an attempt owned by the calling student."""
        attempt = await self._load_attempt(attempt_id, for_update=for_update)
        if attempt.student_id != principal.id:
            raise NotFoundError(f"Attempt {attempt_id} not found")
        test = await self.db.get(SubjectTest, attempt.test_id)
        return attempt, test

    async def _active_questions(self, test_id: int) -> list[Question]:
        result = await self.db.execute(
            select(Question)
            .where(Question.test_id == test_id, Question.active.is_(True))
            .order_by(Question.position, Question.id)
        )
        return list(result.scalars().all())

    async def _answers(self, attempt_id: int) -> list[StudentAnswer]:
        result = await self.db.execute(
            select(StudentAnswer)
            .where(StudentAnswer.attempt_id == attempt_id)
            .order_by(StudentAnswer.id)
        )
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Start
    # ------------------------------------------------------------------

    async def start_attempt(
        self,
        principal: Principal,
        test_id: int,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> StudentAttempt:
        """
        Start a new attempt for the calling student.

        Raises:
            NotFoundError: If the test is not an active published test
            LimitExceededError: Outside the availability window or out of attempts
            ConflictError: If a concurrent start took the same attempt number
        """
        now = utcnow()
        test = await self.db.get(SubjectTest, test_id)
        if not test or not test.active or not test.is_published:
            raise NotFoundError(f"Test {test_id} not found")

        if not test.is_available_at(now):
            raise LimitExceededError(
                f"Test {test_id} is not available at this time",
                errors={
                    "start_date": test.start_date.isoformat() if test.start_date else None,
                    "end_date": test.end_date.isoformat() if test.end_date else None,
                },
            )

        result = await self.db.execute(
            select(
                func.count(StudentAttempt.id),
                func.max(StudentAttempt.attempt_number),
            ).where(
                StudentAttempt.test_id == test.id,
                StudentAttempt.student_id == principal.id,
            )
        )
        used, last_number = result.one()
        if used >= test.attempt_limit:
            logger.info(f"Student {principal.id} hit the attempt limit on test {test.id}")
            raise LimitExceededError(
                f"Attempt limit of {test.attempt_limit} reached for test {test_id}",
                errors={"attempt_limit": test.attempt_limit, "used": used},
            )

        attempt = StudentAttempt(
            test_id=test.id,
            student_id=principal.id,
            attempt_number=(last_number or 0) + 1,
            status=AttemptStatus.STARTED,
            started_at=now,
            ip_address=ip_address,
            user_agent=user_agent[:500] if user_agent else None,
        )
        self.db.add(attempt)
        try:
            await self.db.flush()
        except IntegrityError as e:
            raise ConflictError(
                f"Attempt {attempt.attempt_number} on test {test_id} was started concurrently"
            ) from e

        logger.info(
            f"Attempt {attempt.id} (#{attempt.attempt_number}) started on test {test.id} "
            f"by student {principal.id}"
        )
        return attempt

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    async def get_attempt_detail(self, principal: Principal, attempt_id: int) -> AttemptDetail:
        """
        Read an attempt with the answers the caller may see.

        Students see their recorded responses while the attempt is open,
        and afterwards only when the test allows review; answer keys are
        revealed to them only when the test shows correct answers.
        Instructors and admins see everything.
        """
        attempt, test = await self.get_accessible_attempt(principal, attempt_id)
        detail = AttemptDetail(attempt=attempt, test=test)

        if principal.role == PrincipalRole.STUDENT:
            show_answers = attempt.status.is_open or test.allow_review
            show_keys = (
                not attempt.status.is_open
                and test.allow_review
                and test.show_correct_answers
            )
        else:
            show_answers = show_keys = True

        if show_answers:
            detail.answers = await self._answers(attempt.id)
        if show_keys and detail.answers:
            result = await self.db.execute(
                select(Question).where(
                    Question.id.in_([answer.question_id for answer in detail.answers])
                )
            )
            detail.answer_keys = {question.id: question for question in result.scalars().all()}
        return detail

    async def get_question_paper(self, principal: Principal, attempt_id: int) -> QuestionPaperView:
        """
        Questions of an open attempt in display order.

        Randomized orders are seeded by the attempt so a student sees the
        same paper on every read.
        """
        attempt, test = await self.get_own_attempt(principal, attempt_id)
        ensure_attempt_open(attempt, test, utcnow())

        questions = await self._active_questions(test.id)
        if test.randomize_questions:
            random.Random(attempt.id).shuffle(questions)

        paper = []
        for question in questions:
            options = list(question.active_options)
            if test.randomize_answers:
                random.Random(f"{attempt.id}:{question.id}").shuffle(options)
            paper.append(PaperItem(question=question, options=options))
        return QuestionPaperView(attempt=attempt, test=test, items=paper)

    async def list_own_attempts(self, principal: Principal, test_id: int) -> OwnAttempts:
        """
        The calling student's attempts on a test, oldest first.

        Raises:
            NotFoundError: If the test is not visible to the student
        """
        test = await CatalogService(self.db).get_test(principal, test_id)
        result = await self.db.execute(
            select(StudentAttempt)
            .where(StudentAttempt.test_id == test.id, StudentAttempt.student_id == principal.id)
            .order_by(StudentAttempt.attempt_number)
        )
        return OwnAttempts(test=test, attempts=list(result.scalars().all()))

    async def _statistics(self, conditions: list) -> AttemptStatistics:
        await self.db.flush()
        result = await self.db.execute(
            select(
                StudentAttempt.status,
                StudentAttempt.total_score,
                StudentAttempt.percentage,
                StudentAttempt.passed,
            ).where(*conditions)
        )
        return AttemptStatistics.from_rows(result.all())

    async def attempt_statistics(self, test: SubjectTest) -> AttemptStatistics:
        """Statistics over every submitted attempt of a test."""
        return await self._statistics([
            StudentAttempt.test_id == test.id,
            StudentAttempt.submitted_at.is_not(None),
        ])

    async def list_results(
        self,
        test: SubjectTest,
        student_id: int | None = None,
        status: AttemptStatus | None = None,
        passed: bool | None = None,
        page: int = 1,
        per_page: int = 20,
    ) -> ResultsPage:
        """
        Submitted attempts of a test, newest first, with statistics over
        every attempt matching the filters. Attempts still open are not
        results yet and never appear.
        """
        conditions = [
            StudentAttempt.test_id == test.id,
            StudentAttempt.submitted_at.is_not(None),
        ]
        if student_id is not None:
            conditions.append(StudentAttempt.student_id == student_id)
        if status is not None:
            conditions.append(StudentAttempt.status == status)
        if passed is not None:
            conditions.append(StudentAttempt.passed.is_(passed))

        statistics = await self._statistics(conditions)

        result = await self.db.execute(
            select(StudentAttempt)
            .where(*conditions)
            .order_by(StudentAttempt.started_at.desc(), StudentAttempt.id.desc())
            .offset((page - 1) * per_page)
            .limit(per_page)
        )

        return ResultsPage(attempts=list(result.scalars().all()), statistics=statistics)

    # ------------------------------------------------------------------
    # Submit
    # ------------------------------------------------------------------

    async def submit_attempt(self, principal: Principal, attempt_id: int) -> StudentAttempt:
        """
        Submit an open attempt and score it.

        Every active question gets an answer row (blank if never
        answered). The attempt ends ``graded`` unless an answer still
        needs manual grading, in which case it stays ``submitted``.

        Raises:
            InvalidStateError: If the attempt is closed or past its time limit
        """
        now = utcnow()
        attempt, test = await self.get_own_attempt(principal, attempt_id, for_update=True)
        ensure_attempt_open(attempt, test, now)

        questions = {question.id: question for question in await self._active_questions(test.id)}
        answers = {answer.question_id: answer for answer in await self._answers(attempt.id)}

        for question_id in questions.keys() - answers.keys():
            blank = StudentAnswer(attempt_id=attempt.id, question_id=question_id, selections=[])
            self.db.add(blank)
            answers[question_id] = blank

        for question_id, answer in answers.items():
            question = questions.get(question_id)
            if question is None:
                # Question removed after it was answered
                answer.points_possible = 0.0
                answer.points_earned = 0.0
                answer.is_correct = None
                continue

            outcome = score_response(
                answer_key_for(question),
                Response.from_answer(answer),
                question.points,
            )
            answer.points_possible = question.points
            answer.points_earned = outcome.points_earned
            answer.is_correct = outcome.is_correct
            answer.manually_graded = False

        attempt.submitted_at = now
        attempt.duration_seconds = max(int((now - attempt.started_at).total_seconds()), 0)
        attempt.max_score = test.max_score
        totals = self.apply_totals(attempt, answers.values(), test)

        if totals.is_fully_graded:
            attempt.status = AttemptStatus.GRADED
            attempt.graded_at = now
        else:
            attempt.status = AttemptStatus.SUBMITTED

        await self.db.flush()
        logger.info(
            f"Attempt {attempt.id} submitted: {attempt.status.value}, "
            f"{attempt.total_score}/{attempt.max_score} ({attempt.percentage}%), "
            f"{totals.pending_count} pending"
        )
        return attempt

    def apply_totals(
        self,
        attempt: StudentAttempt,
        answers: Iterable[StudentAnswer],
        test: SubjectTest,
    ) -> AttemptTotals:
        """Write the aggregate of ``answers`` onto the attempt and return it."""
        totals = aggregate(answers, attempt.max_score or 0.0, test.passing_score, self.policy)
        attempt.auto_graded_score = totals.auto_graded_score
        attempt.manual_graded_score = totals.manual_graded_score
        attempt.total_score = totals.total_score
        attempt.percentage = totals.percentage
        attempt.passed = totals.passed
        attempt.letter_grade = totals.letter_grade
        attempt.numeric_grade = totals.numeric_grade
        return totals

    # ------------------------------------------------------------------
    # Abandonment sweep
    # ------------------------------------------------------------------

    async def abandon_expired(self, now: datetime | None = None) -> int:
        """
        Mark open attempts of timed tests that ran past their deadline as
        abandoned. Safe to run repeatedly.

        Returns:
            Number of attempts abandoned by this run
        """
        now = now or utcnow()
        result = await self.db.execute(
            select(StudentAttempt, SubjectTest)
            .join(SubjectTest, SubjectTest.id == StudentAttempt.test_id)
            .where(
                StudentAttempt.status.in_([AttemptStatus.STARTED, AttemptStatus.IN_PROGRESS]),
                SubjectTest.duration.is_not(None),
            )
        )

        abandoned = 0
        for attempt, test in result.all():
            deadline = attempt_deadline(attempt, test)
            if deadline is not None and now > deadline:
                attempt.status = AttemptStatus.ABANDONED
                abandoned += 1

        await self.db.flush()
        if abandoned:
            logger.info(f"Abandoned {abandoned} expired attempt(s)")
        return abandoned
