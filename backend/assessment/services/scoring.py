"""
University Assessment Engine - Scoring Engine
Per-question correctness, aggregate score, grade bands and pass/fail verdict
"""
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from assessment.core.config import Settings, settings
from assessment.models.attempt import StudentAnswer
from assessment.models.question import Question, QuestionType


# ============================================================================
# Grading policy
# ============================================================================

@dataclass(frozen=True)
class GradeBand:
    """Lowest percentage that earns ``letter`` / ``numeric``."""
    min_percentage: float
    letter: str
    numeric: str


@dataclass(frozen=True)
class GradingPolicy:
    """
    Ordered grade bands plus the manual-grading correctness threshold.

    Bands are kept sorted from the highest threshold down and must
    include one starting at 0 so every percentage maps to a band.
    """
    bands: tuple[GradeBand, ...]
    manual_correct_ratio: float = 0.5

    def __post_init__(self):
        if not self.bands:
            raise ValueError("Grading policy needs at least one band")
        ordered = tuple(sorted(self.bands, key=lambda band: band.min_percentage, reverse=True))
        if ordered[-1].min_percentage > 0:
            raise ValueError("Grading policy must contain a band starting at 0")
        if not 0 <= self.manual_correct_ratio <= 1:
            raise ValueError("manual_correct_ratio must be between 0 and 1")
        object.__setattr__(self, "bands", ordered)

    @classmethod
    def from_settings(cls, config: Settings | None = None) -> "GradingPolicy":
        config = config or settings
        return cls(
            bands=tuple(
                GradeBand(min_percentage=float(minimum), letter=letter, numeric=str(numeric))
                for minimum, letter, numeric in config.GRADE_BANDS
            ),
            manual_correct_ratio=config.MANUAL_CORRECT_RATIO,
        )

    def band_for(self, percentage: float) -> GradeBand:
        for band in self.bands:
            if percentage >= band.min_percentage:
                return band
        return self.bands[-1]

    def is_manual_grade_correct(self, points_earned: float, points_possible: float) -> bool:
        return points_earned >= self.manual_correct_ratio * points_possible


# ============================================================================
# Answer keys (one variant per question type)
# ============================================================================

@dataclass(frozen=True)
class MultipleChoiceKey:
    correct_option_ids: frozenset[int]


@dataclass(frozen=True)
class TrueFalseKey:
    correct: bool | None


@dataclass(frozen=True)
class ShortAnswerKey:
    expected: str | None
    case_sensitive: bool = False


@dataclass(frozen=True)
class EssayKey:
    word_limit: int | None = None


AnswerKey = MultipleChoiceKey | TrueFalseKey | ShortAnswerKey | EssayKey


_KEY_BUILDERS: dict[QuestionType, Callable[[Question], AnswerKey]] = {
    QuestionType.MULTIPLE_CHOICE: lambda question: MultipleChoiceKey(
        correct_option_ids=frozenset(
            option.id for option in question.active_options if option.is_correct
        )
    ),
    QuestionType.TRUE_FALSE: lambda question: TrueFalseKey(
        correct=question.correct_answer_boolean
    ),
    QuestionType.SHORT_ANSWER: lambda question: ShortAnswerKey(
        expected=question.correct_answer_text,
        case_sensitive=question.case_sensitive,
    ),
    QuestionType.ESSAY: lambda question: EssayKey(word_limit=question.word_limit),
}


def answer_key_for(question: Question) -> AnswerKey:
    """Build the answer key variant matching the question's type."""
    return _KEY_BUILDERS[question.question_type](question)


# ============================================================================
# Per-question scoring
# ============================================================================

@dataclass(frozen=True)
class Response:
    """What the student gave for one question, independent of storage."""
    option_ids: frozenset[int] = field(default_factory=frozenset)
    boolean: bool | None = None
    text: str | None = None

    @classmethod
    def from_answer(cls, answer: StudentAnswer) -> "Response":
        option_ids = set(answer.selected_option_ids)
        if answer.selected_option_id is not None:
            option_ids.add(answer.selected_option_id)
        return cls(
            option_ids=frozenset(option_ids),
            boolean=answer.answer_boolean,
            text=answer.answer_text,
        )


@dataclass(frozen=True)
class QuestionScore:
    """Outcome for one question. ``None`` points mean manual grading is pending."""
    points_earned: float | None
    is_correct: bool | None

    @property
    def requires_manual_grading(self) -> bool:
        return self.points_earned is None


def normalize_short_answer(text: str, case_sensitive: bool) -> str:
    """Trim surrounding whitespace, fold case unless the question is case-sensitive."""
    text = text.strip()
    return text if case_sensitive else text.casefold()


def _match_multiple_choice(key: MultipleChoiceKey, response: Response) -> bool:
    return bool(response.option_ids) and response.option_ids == key.correct_option_ids


def _match_true_false(key: TrueFalseKey, response: Response) -> bool:
    return response.boolean is not None and response.boolean == key.correct


def _match_short_answer(key: ShortAnswerKey, response: Response) -> bool:
    if response.text is None or key.expected is None:
        return False
    given = normalize_short_answer(response.text, key.case_sensitive)
    if not given:
        return False
    return given == normalize_short_answer(key.expected, key.case_sensitive)


_MATCHERS: dict[type, Callable[[AnswerKey, Response], bool]] = {
    MultipleChoiceKey: _match_multiple_choice,
    TrueFalseKey: _match_true_false,
    ShortAnswerKey: _match_short_answer,
}


def score_response(key: AnswerKey, response: Response, points: float) -> QuestionScore:
    """
    Score one response against its key.

    Auto-gradable keys give all or nothing; an essay key always leaves
    the score pending for an instructor.
    """
    if isinstance(key, EssayKey):
        return QuestionScore(points_earned=None, is_correct=None)

    correct = _MATCHERS[type(key)](key, response)
    return QuestionScore(points_earned=points if correct else 0.0, is_correct=correct)


# ============================================================================
# Aggregation
# ============================================================================

@dataclass(frozen=True)
class AttemptTotals:
    """Aggregate outcome of an attempt, recomputed from its answer rows."""
    auto_graded_score: float
    manual_graded_score: float
    total_score: float
    max_score: float
    percentage: float
    passed: bool | None
    letter_grade: str
    numeric_grade: str
    pending_count: int

    @property
    def is_fully_graded(self) -> bool:
        return self.pending_count == 0


def calculate_percentage(total_score: float, max_score: float) -> float:
    if max_score <= 0:
        return 0.0
    return round(total_score / max_score * 100, 2)


def aggregate(
    answers: Iterable[StudentAnswer],
    max_score: float,
    passing_score: float | None,
    policy: GradingPolicy,
) -> AttemptTotals:
    """
    Sum the answer rows of an attempt into its totals.

    Pending answers (no points yet) contribute nothing but are counted
    so the caller can tell whether the attempt is fully graded.
    """
    auto_score = 0.0
    manual_score = 0.0
    pending = 0

    for answer in answers:
        if answer.points_earned is None:
            pending += 1
        elif answer.manually_graded:
            manual_score += answer.points_earned
        else:
            auto_score += answer.points_earned

    total = auto_score + manual_score
    percentage = calculate_percentage(total, max_score)
    band = policy.band_for(percentage)

    return AttemptTotals(
        auto_graded_score=auto_score,
        manual_graded_score=manual_score,
        total_score=total,
        max_score=max_score,
        percentage=percentage,
        passed=None if passing_score is None else percentage >= passing_score,
        letter_grade=band.letter,
        numeric_grade=band.numeric,
        pending_count=pending,
    )
