"""
University Assessment Engine - Test Model
A gradable test owned by an instructor and tied to a subject
"""
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from assessment.core.database import Base, utcnow


class SubjectTest(Base):
    """
    A test within a subject.

    ``max_score`` and ``question_count`` are derived from the active
    questions and are only ever written by the question bank's
    aggregate recomputation.
    """

    __tablename__ = "subject_tests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Scope (references into the wider university schema)
    subject_id: Mapped[int] = mapped_column(Integer, index=True)
    instructor_id: Mapped[int] = mapped_column(Integer, index=True)
    group_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    topic_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    curriculum_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Content
    title: Mapped[str] = mapped_column(String(255))
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    instructions: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Limits & scoring configuration
    duration: Mapped[int | None] = mapped_column(Integer, nullable=True)  # minutes
    passing_score: Mapped[float | None] = mapped_column(Float, nullable=True)  # percentage
    max_score: Mapped[float] = mapped_column(Float, default=0.0)
    question_count: Mapped[int] = mapped_column(Integer, default=0)
    attempt_limit: Mapped[int] = mapped_column(Integer, default=1)

    # Behaviour flags
    randomize_questions: Mapped[bool] = mapped_column(Boolean, default=False)
    randomize_answers: Mapped[bool] = mapped_column(Boolean, default=False)
    show_correct_answers: Mapped[bool] = mapped_column(Boolean, default=False)
    allow_review: Mapped[bool] = mapped_column(Boolean, default=True)

    # Availability window
    start_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    end_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    # Publishing
    is_published: Mapped[bool] = mapped_column(Boolean, default=False)
    published_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    position: Mapped[int] = mapped_column(Integer, default=0)
    active: Mapped[bool] = mapped_column(Boolean, default=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=utcnow,
        onupdate=utcnow
    )

    def is_available_at(self, moment: datetime) -> bool:
        """Whether ``moment`` falls inside the availability window."""
        after_start = self.start_date is None or self.start_date <= moment
        before_end = self.end_date is None or self.end_date >= moment
        return after_start and before_end

    @property
    def is_available(self) -> bool:
        return self.is_available_at(utcnow())

    @property
    def is_expired(self) -> bool:
        return self.end_date is not None and self.end_date < utcnow()

    def __repr__(self):
        return f"<SubjectTest id={self.id} title={self.title!r} published={self.is_published}>"
