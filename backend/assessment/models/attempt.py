"""
University Assessment Engine - Attempt Models
A student's pass through a test and the per-question responses it owns
"""
from datetime import datetime
from enum import Enum

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from assessment.core.database import Base, utcnow


class AttemptStatus(str, Enum):
    """
    Attempt lifecycle states.

    started -> in_progress -> submitted -> graded, with ``abandoned``
    reachable from started/in_progress on timeout.
    """
    STARTED = "started"
    IN_PROGRESS = "in_progress"
    SUBMITTED = "submitted"
    GRADED = "graded"
    ABANDONED = "abandoned"

    @property
    def is_open(self) -> bool:
        return self in (AttemptStatus.STARTED, AttemptStatus.IN_PROGRESS)


class StudentAttempt(Base):
    """One student's pass through one test."""

    __tablename__ = "student_attempts"
    __table_args__ = (
        UniqueConstraint(
            "test_id", "student_id", "attempt_number",
            name="uq_student_attempts_test_student_number",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    test_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("subject_tests.id", ondelete="CASCADE"),
        index=True
    )
    student_id: Mapped[int] = mapped_column(Integer, index=True)
    attempt_number: Mapped[int] = mapped_column(Integer)
    status: Mapped[AttemptStatus] = mapped_column(
        SAEnum(
            AttemptStatus,
            native_enum=False,
            length=32,
            values_callable=lambda enum: [member.value for member in enum],
        ),
        default=AttemptStatus.STARTED,
        index=True,
    )

    # Timing
    started_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    graded_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    duration_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Scores (snapshots taken at submission / grading)
    total_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    max_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    percentage: Mapped[float | None] = mapped_column(Float, nullable=True)
    passed: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    letter_grade: Mapped[str | None] = mapped_column(String(8), nullable=True)
    numeric_grade: Mapped[str | None] = mapped_column(String(8), nullable=True)
    auto_graded_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    manual_graded_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    feedback: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Client metadata
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(500), nullable=True)

    def __repr__(self):
        return (
            f"<StudentAttempt id={self.id} test={self.test_id} student={self.student_id} "
            f"#{self.attempt_number} status={self.status}>"
        )


class StudentAnswer(Base):
    """One response slot per question per attempt."""

    __tablename__ = "student_answers"
    __table_args__ = (
        UniqueConstraint("attempt_id", "question_id", name="uq_student_answers_attempt_question"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    attempt_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("student_attempts.id", ondelete="CASCADE"),
        index=True
    )
    question_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("questions.id", ondelete="CASCADE"),
        index=True
    )

    # Response (which field is meaningful depends on the question type)
    selected_option_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("answer_options.id", ondelete="SET NULL"),
        nullable=True
    )
    answer_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    answer_boolean: Mapped[bool | None] = mapped_column(Boolean, nullable=True)

    # Grading
    points_earned: Mapped[float | None] = mapped_column(Float, nullable=True)
    points_possible: Mapped[float] = mapped_column(Float, default=0.0)
    is_correct: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    manually_graded: Mapped[bool] = mapped_column(Boolean, default=False)
    graded_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    graded_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    feedback: Mapped[str | None] = mapped_column(Text, nullable=True)

    answered_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    # Relationships
    selections: Mapped[list["StudentAnswerSelection"]] = relationship(
        "StudentAnswerSelection",
        cascade="all, delete-orphan",
        order_by="StudentAnswerSelection.position",
        lazy="selectin",
    )

    @property
    def selected_option_ids(self) -> list[int]:
        """Selected options in the order the student gave them."""
        return [selection.option_id for selection in self.selections]

    @property
    def is_pending(self) -> bool:
        """Still waiting for a score (essays until an instructor grades them)."""
        return self.points_earned is None


class StudentAnswerSelection(Base):
    """One selected option of a multiple-choice response, kept as an ordered set."""

    __tablename__ = "student_answer_selections"
    __table_args__ = (
        UniqueConstraint("answer_id", "option_id", name="uq_student_answer_selections_answer_option"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    answer_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("student_answers.id", ondelete="CASCADE"),
        index=True
    )
    option_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("answer_options.id", ondelete="CASCADE")
    )
    position: Mapped[int] = mapped_column(Integer, default=0)
