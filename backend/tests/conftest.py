"""
University Assessment Engine - Test Configuration
Pytest fixtures and configuration for testing
"""
from collections.abc import AsyncGenerator, Awaitable, Callable
from typing import Any

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from assessment.core.database import Base, get_db
from assessment.core.security import Principal, PrincipalRole, create_access_token
from assessment.main import app
from assessment.models.test import SubjectTest
from assessment.schemas.question import (
    AnswerOptionCreate,
    EssayQuestionCreate,
    MultipleChoiceQuestionCreate,
    ShortAnswerQuestionCreate,
    TrueFalseQuestionCreate,
)
from assessment.schemas.test import SubjectTestCreate
from assessment.services.catalog import CatalogService
from assessment.services.question_bank import QuestionBankService


# Test database URL (use SQLite for testing)
TEST_DATABASE_URL = "sqlite+aiosqlite:///./test.db"

# Create test engine
test_engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    poolclass=NullPool,
)

test_session_maker = async_sessionmaker(
    test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


@pytest_asyncio.fixture(scope="function")
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database session for each test."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with test_session_maker() as session:
        yield session

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
def session_factory(db_session: AsyncSession) -> async_sessionmaker[AsyncSession]:
    """Independent sessions on the same (already created) schema."""
    return test_session_maker


@pytest_asyncio.fixture(scope="function")
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Create a test client with database session override."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


# ============================================================================
# Principals
# ============================================================================

@pytest.fixture
def instructor() -> Principal:
    return Principal(id=1, role=PrincipalRole.INSTRUCTOR)


@pytest.fixture
def other_instructor() -> Principal:
    return Principal(id=2, role=PrincipalRole.INSTRUCTOR)


@pytest.fixture
def student() -> Principal:
    return Principal(id=100, role=PrincipalRole.STUDENT)


@pytest.fixture
def other_student() -> Principal:
    return Principal(id=101, role=PrincipalRole.STUDENT)


@pytest.fixture
def admin() -> Principal:
    return Principal(id=900, role=PrincipalRole.ADMIN)


@pytest.fixture
def auth_headers() -> Callable[[Principal], dict[str, str]]:
    """Bearer headers as the identity provider would issue them."""

    def _headers(principal: Principal) -> dict[str, str]:
        token = create_access_token(
            subject=principal.id,
            additional_claims={"role": principal.role.value},
        )
        return {"Authorization": f"Bearer {token}"}

    return _headers


# ============================================================================
# Sample data
# ============================================================================

@pytest.fixture
def sample_test_data() -> dict[str, Any]:
    """Sample test payload."""
    return {
        "subject_id": 10,
        "group_id": 20,
        "title": "Midterm: Linear Algebra",
        "description": "Chapters 1-4",
        "duration": 45,
        "passing_score": 50,
        "attempt_limit": 1,
    }


def mc_question(points: float = 2.0, allow_multiple: bool = False) -> MultipleChoiceQuestionCreate:
    """Multiple choice with options A (correct), B and C."""
    return MultipleChoiceQuestionCreate(
        question_type="multiple_choice",
        question_text="Which matrix is singular?",
        points=points,
        allow_multiple=allow_multiple,
        options=[
            AnswerOptionCreate(answer_text="A", is_correct=True),
            AnswerOptionCreate(answer_text="B"),
            AnswerOptionCreate(answer_text="C"),
        ],
    )


def tf_question(points: float = 1.0, correct: bool = True) -> TrueFalseQuestionCreate:
    return TrueFalseQuestionCreate(
        question_type="true_false",
        question_text="Every square matrix has a determinant.",
        points=points,
        correct_answer_boolean=correct,
    )


def sa_question(points: float = 1.0, answer: str = "Eigenvalue", case_sensitive: bool = False):
    return ShortAnswerQuestionCreate(
        question_type="short_answer",
        question_text="Name the scalar lambda in Av = lambda v.",
        points=points,
        correct_answer_text=answer,
        case_sensitive=case_sensitive,
    )


def essay_question(points: float = 5.0, word_limit: int | None = None) -> EssayQuestionCreate:
    return EssayQuestionCreate(
        question_type="essay",
        question_text="Explain the rank-nullity theorem.",
        points=points,
        word_limit=word_limit,
    )


@pytest.fixture
def question_payloads():
    """Builders for question payloads of every type."""
    return {
        "mc": mc_question,
        "tf": tf_question,
        "sa": sa_question,
        "essay": essay_question,
    }


@pytest.fixture
def make_test(
    db_session: AsyncSession,
    instructor: Principal,
    sample_test_data: dict[str, Any],
) -> Callable[..., Awaitable[SubjectTest]]:
    """
    Build a test owned by ``instructor`` with the given questions,
    optionally published.
    """

    async def _make(questions=(), publish: bool = False, **overrides) -> SubjectTest:
        catalog = CatalogService(db_session)
        bank = QuestionBankService(db_session)

        test = await catalog.create_test(
            instructor, SubjectTestCreate(**{**sample_test_data, **overrides})
        )
        for payload in questions:
            await bank.add_question(instructor, test.id, payload)
        if publish:
            await catalog.publish_test(instructor, test.id)
        return test

    return _make
