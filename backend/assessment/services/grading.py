"""
University Assessment Engine - Grading Reconciler
Manual grades and overrides, folded back into the attempt's totals
"""
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from assessment.core.database import utcnow
from assessment.core.security import Principal
from assessment.models.attempt import AttemptStatus, StudentAnswer, StudentAttempt
from assessment.schemas.attempt import GradeRequest
from assessment.services.attempts import AttemptService
from assessment.services.exceptions import InvalidStateError, ValidationFailure
from assessment.services.scoring import GradingPolicy

logger = logging.getLogger(__name__)

GRADABLE_STATUSES = (AttemptStatus.SUBMITTED, AttemptStatus.GRADED)


class GradingService:
    """Service for instructor grading of submitted attempts."""

    def __init__(self, db: AsyncSession, policy: GradingPolicy | None = None):
        self.db = db
        self.policy = policy or GradingPolicy.from_settings()
        self.attempts = AttemptService(db, self.policy)

    async def grade_attempt(
        self,
        principal: Principal,
        attempt_id: int,
        data: GradeRequest,
    ) -> StudentAttempt:
        """
        Apply manual grades and recompute the attempt's totals.

        Totals are rebuilt from the current answer rows, so repeating the
        same grading pass leaves the scores unchanged. The attempt becomes
        ``graded`` once no answer is left without points.

        Raises:
            NotFoundError: If the attempt is not on the instructor's test
            InvalidStateError: If the attempt was never submitted
            ValidationFailure: On foreign answer ids or out-of-range points
        """
        attempt, test = await self.attempts.get_accessible_attempt(
            principal, attempt_id, for_update=True
        )
        if attempt.status not in GRADABLE_STATUSES:
            raise InvalidStateError(
                f"Attempt {attempt.id} is {attempt.status.value} and cannot be graded",
                errors={"status": attempt.status.value},
            )

        result = await self.db.execute(
            select(StudentAnswer).where(StudentAnswer.attempt_id == attempt.id)
        )
        answers = {answer.id: answer for answer in result.scalars().all()}

        errors = {}
        seen = set()
        for index, entry in enumerate(data.grades):
            answer = answers.get(entry.answer_id)
            if answer is None:
                errors[f"grades.{index}.answer_id"] = f"answer {entry.answer_id} is not part of this attempt"
            elif entry.answer_id in seen:
                errors[f"grades.{index}.answer_id"] = f"answer {entry.answer_id} graded twice"
            elif entry.points_earned > answer.points_possible:
                errors[f"grades.{index}.points_earned"] = (
                    f"must be between 0 and {answer.points_possible}"
                )
            seen.add(entry.answer_id)
        if errors:
            raise ValidationFailure(f"Invalid grades for attempt {attempt.id}", errors=errors)

        now = utcnow()
        for entry in data.grades:
            answer = answers[entry.answer_id]
            answer.points_earned = entry.points_earned
            answer.is_correct = self.policy.is_manual_grade_correct(
                entry.points_earned, answer.points_possible
            )
            answer.manually_graded = True
            answer.graded_by = principal.id
            answer.graded_at = now
            if entry.feedback is not None:
                answer.feedback = entry.feedback

        if data.feedback is not None:
            attempt.feedback = data.feedback

        totals = self.attempts.apply_totals(attempt, answers.values(), test)
        if totals.is_fully_graded:
            attempt.status = AttemptStatus.GRADED
            attempt.graded_at = now

        await self.db.flush()
        logger.info(
            f"Attempt {attempt.id} graded by {principal.id}: {len(data.grades)} answer(s), "
            f"{attempt.total_score}/{attempt.max_score}, {totals.pending_count} pending"
        )
        return attempt
