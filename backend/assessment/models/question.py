"""
University Assessment Engine - Question Bank Models
Questions of a test and the answer options of multiple-choice questions
"""
from datetime import datetime
from enum import Enum

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from assessment.core.database import Base, utcnow


class QuestionType(str, Enum):
    """Closed set of question types."""
    MULTIPLE_CHOICE = "multiple_choice"
    TRUE_FALSE = "true_false"
    SHORT_ANSWER = "short_answer"
    ESSAY = "essay"

    @property
    def is_auto_gradable(self) -> bool:
        return self is not QuestionType.ESSAY


class Question(Base):
    """
    One question of a test.

    Only the columns relevant to ``question_type`` carry meaning:
    ``allow_multiple`` (multiple choice), ``correct_answer_boolean``
    (true/false), ``correct_answer_text`` and ``case_sensitive`` (short
    answer), ``word_limit`` (essay). The rest stay null/false.
    """

    __tablename__ = "questions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    test_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("subject_tests.id", ondelete="CASCADE"),
        index=True
    )

    question_text: Mapped[str] = mapped_column(Text)
    question_type: Mapped[QuestionType] = mapped_column(
        SAEnum(
            QuestionType,
            native_enum=False,
            length=32,
            values_callable=lambda enum: [member.value for member in enum],
        )
    )
    points: Mapped[float] = mapped_column(Float, default=1.0)
    position: Mapped[int] = mapped_column(Integer, default=0)
    is_required: Mapped[bool] = mapped_column(Boolean, default=False)
    explanation: Mapped[str | None] = mapped_column(Text, nullable=True)
    image_path: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # Type-specific grading fields
    allow_multiple: Mapped[bool] = mapped_column(Boolean, default=False)
    correct_answer_boolean: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    correct_answer_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    case_sensitive: Mapped[bool] = mapped_column(Boolean, default=False)
    word_limit: Mapped[int | None] = mapped_column(Integer, nullable=True)

    active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=utcnow,
        onupdate=utcnow
    )

    # Relationships
    options: Mapped[list["AnswerOption"]] = relationship(
        "AnswerOption",
        back_populates="question",
        cascade="all, delete-orphan",
        order_by="AnswerOption.position",
        lazy="selectin",
    )

    @property
    def active_options(self) -> list["AnswerOption"]:
        return [option for option in self.options if option.active]

    def __repr__(self):
        return f"<Question id={self.id} type={self.question_type} points={self.points}>"


class AnswerOption(Base):
    """A selectable option of a multiple-choice question."""

    __tablename__ = "answer_options"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    question_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("questions.id", ondelete="CASCADE"),
        index=True
    )

    answer_text: Mapped[str] = mapped_column(Text)
    image_path: Mapped[str | None] = mapped_column(String(500), nullable=True)
    position: Mapped[int] = mapped_column(Integer, default=0)
    is_correct: Mapped[bool] = mapped_column(Boolean, default=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True)

    question: Mapped["Question"] = relationship("Question", back_populates="options")
