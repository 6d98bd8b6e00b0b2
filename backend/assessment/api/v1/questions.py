"""
University Assessment Engine - Question Bank API
Endpoints for the questions and answer options of a test
"""
from fastapi import APIRouter, status

from assessment.api.deps import DbSession, InstructorPrincipal, as_http_exception
from assessment.schemas.question import (
    AnswerOptionCreate,
    AnswerOptionResponse,
    AnswerOptionUpdate,
    QuestionCreate,
    QuestionReorder,
    QuestionResponse,
    QuestionStatisticsResponse,
    QuestionUpdate,
)
from assessment.services.exceptions import AssessmentError
from assessment.services.question_bank import QuestionBankService, QuestionStatistics

router = APIRouter(prefix="/tests/{test_id}/questions", tags=["Questions"])


def _with_statistics(question, statistics: QuestionStatistics) -> QuestionResponse:
    response = QuestionResponse.model_validate(question)
    response.statistics = QuestionStatisticsResponse.model_validate(statistics)
    return response


@router.get("", response_model=list[QuestionResponse], summary="List questions of a test")
async def list_questions(
    test_id: int,
    principal: InstructorPrincipal,
    db: DbSession,
) -> list[QuestionResponse]:
    bank = QuestionBankService(db)
    try:
        questions = await bank.list_questions(principal, test_id)
    except AssessmentError as e:
        raise as_http_exception(e)

    statistics = await bank.question_statistics([question.id for question in questions])
    return [_with_statistics(question, statistics[question.id]) for question in questions]


@router.post(
    "",
    response_model=QuestionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add a question",
    description="The body is discriminated on question_type; multiple choice may carry options inline.",
)
async def add_question(
    test_id: int,
    data: QuestionCreate,
    principal: InstructorPrincipal,
    db: DbSession,
) -> QuestionResponse:
    try:
        question = await QuestionBankService(db).add_question(principal, test_id, data)
    except AssessmentError as e:
        raise as_http_exception(e)
    return QuestionResponse.model_validate(question)


@router.put(
    "/reorder",
    response_model=list[QuestionResponse],
    summary="Reorder questions",
    description="Supply every active question id once, in the new order.",
)
async def reorder_questions(
    test_id: int,
    data: QuestionReorder,
    principal: InstructorPrincipal,
    db: DbSession,
) -> list[QuestionResponse]:
    try:
        questions = await QuestionBankService(db).reorder_questions(
            principal, test_id, data.question_ids
        )
    except AssessmentError as e:
        raise as_http_exception(e)
    return [QuestionResponse.model_validate(question) for question in questions]


@router.get("/{question_id}", response_model=QuestionResponse, summary="Get a question")
async def get_question(
    test_id: int,
    question_id: int,
    principal: InstructorPrincipal,
    db: DbSession,
) -> QuestionResponse:
    bank = QuestionBankService(db)
    try:
        question = await bank.get_question(principal, test_id, question_id)
    except AssessmentError as e:
        raise as_http_exception(e)

    statistics = await bank.question_statistics([question.id])
    return _with_statistics(question, statistics[question.id])


@router.patch("/{question_id}", response_model=QuestionResponse, summary="Update a question")
async def update_question(
    test_id: int,
    question_id: int,
    data: QuestionUpdate,
    principal: InstructorPrincipal,
    db: DbSession,
) -> QuestionResponse:
    try:
        question = await QuestionBankService(db).update_question(
            principal, test_id, question_id, data
        )
    except AssessmentError as e:
        raise as_http_exception(e)
    return QuestionResponse.model_validate(question)


@router.delete(
    "/{question_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Remove a question",
)
async def remove_question(
    test_id: int,
    question_id: int,
    principal: InstructorPrincipal,
    db: DbSession,
) -> None:
    try:
        await QuestionBankService(db).remove_question(principal, test_id, question_id)
    except AssessmentError as e:
        raise as_http_exception(e)


@router.post(
    "/{question_id}/duplicate",
    response_model=QuestionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Duplicate a question",
)
async def duplicate_question(
    test_id: int,
    question_id: int,
    principal: InstructorPrincipal,
    db: DbSession,
) -> QuestionResponse:
    try:
        question = await QuestionBankService(db).duplicate_question(
            principal, test_id, question_id
        )
    except AssessmentError as e:
        raise as_http_exception(e)
    return QuestionResponse.model_validate(question)


# ============================================================================
# Answer Options
# ============================================================================

@router.post(
    "/{question_id}/options",
    response_model=AnswerOptionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add an answer option",
)
async def add_option(
    test_id: int,
    question_id: int,
    data: AnswerOptionCreate,
    principal: InstructorPrincipal,
    db: DbSession,
) -> AnswerOptionResponse:
    try:
        option = await QuestionBankService(db).add_option(principal, test_id, question_id, data)
    except AssessmentError as e:
        raise as_http_exception(e)
    return AnswerOptionResponse.model_validate(option)


@router.patch(
    "/{question_id}/options/{option_id}",
    response_model=AnswerOptionResponse,
    summary="Update an answer option",
)
async def update_option(
    test_id: int,
    question_id: int,
    option_id: int,
    data: AnswerOptionUpdate,
    principal: InstructorPrincipal,
    db: DbSession,
) -> AnswerOptionResponse:
    try:
        option = await QuestionBankService(db).update_option(
            principal, test_id, question_id, option_id, data
        )
    except AssessmentError as e:
        raise as_http_exception(e)
    return AnswerOptionResponse.model_validate(option)


@router.delete(
    "/{question_id}/options/{option_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Remove an answer option",
)
async def remove_option(
    test_id: int,
    question_id: int,
    option_id: int,
    principal: InstructorPrincipal,
    db: DbSession,
) -> None:
    try:
        await QuestionBankService(db).remove_option(principal, test_id, question_id, option_id)
    except AssessmentError as e:
        raise as_http_exception(e)
