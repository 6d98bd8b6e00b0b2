"""
University Assessment Engine - Attempts API
Endpoints for starting, answering, submitting and grading attempts
"""
from fastapi import APIRouter, BackgroundTasks, Request, status

from assessment.api.deps import (
    AdminPrincipal,
    CurrentPrincipal,
    DbSession,
    InstructorPrincipal,
    Notifier,
    Policy,
    StudentPrincipal,
    as_http_exception,
)
from assessment.models.attempt import AttemptStatus
from assessment.schemas.attempt import (
    AnswerResponse,
    AnswerSubmit,
    AttemptDetailResponse,
    AttemptResponse,
    CorrectAnswer,
    GradeRequest,
    PaperOption,
    PaperQuestion,
    QuestionPaper,
    SweepResponse,
)
from assessment.services.answers import AnswerRecorder
from assessment.services.attempts import AttemptDetail, AttemptService, attempt_deadline
from assessment.services.exceptions import AssessmentError
from assessment.services.grading import GradingService
from assessment.services.notifications import dispatch_notification, graded_event

router = APIRouter(tags=["Attempts"])


def _detail_response(detail: AttemptDetail) -> AttemptDetailResponse:
    response = AttemptDetailResponse.model_validate(detail.attempt)
    if detail.answers is None:
        return response

    answers = []
    for answer in detail.answers:
        item = AnswerResponse.model_validate(answer)
        question = detail.answer_keys.get(answer.question_id)
        if question is not None:
            item.correct_answer = CorrectAnswer(
                correct_option_ids=[
                    option.id for option in question.active_options if option.is_correct
                ],
                correct_answer_boolean=question.correct_answer_boolean,
                correct_answer_text=question.correct_answer_text,
                explanation=question.explanation,
            )
        answers.append(item)
    response.answers = answers
    return response


@router.post(
    "/tests/{test_id}/attempts",
    response_model=AttemptResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Start an attempt",
    description="Start a new attempt on a published test within its window and attempt limit.",
)
async def start_attempt(
    test_id: int,
    request: Request,
    principal: StudentPrincipal,
    db: DbSession,
    policy: Policy,
) -> AttemptResponse:
    try:
        attempt = await AttemptService(db, policy).start_attempt(
            principal,
            test_id,
            ip_address=request.client.host if request.client else None,
            user_agent=request.headers.get("user-agent"),
        )
    except AssessmentError as e:
        raise as_http_exception(e)
    return AttemptResponse.model_validate(attempt)


@router.post(
    "/attempts/sweep",
    response_model=SweepResponse,
    summary="Abandon expired attempts",
    description="Mark open attempts past their time limit as abandoned.",
)
async def sweep_abandoned(
    principal: AdminPrincipal,
    db: DbSession,
) -> SweepResponse:
    abandoned = await AttemptService(db).abandon_expired()
    return SweepResponse(abandoned=abandoned)


@router.get("/attempts/{attempt_id}", response_model=AttemptDetailResponse, summary="Get an attempt")
async def get_attempt(
    attempt_id: int,
    principal: CurrentPrincipal,
    db: DbSession,
) -> AttemptDetailResponse:
    try:
        detail = await AttemptService(db).get_attempt_detail(principal, attempt_id)
    except AssessmentError as e:
        raise as_http_exception(e)
    return _detail_response(detail)


@router.get(
    "/attempts/{attempt_id}/questions",
    response_model=QuestionPaper,
    summary="Get the question paper",
    description="Questions of an open attempt without answer keys, in display order.",
)
async def get_question_paper(
    attempt_id: int,
    principal: StudentPrincipal,
    db: DbSession,
) -> QuestionPaper:
    try:
        paper = await AttemptService(db).get_question_paper(principal, attempt_id)
    except AssessmentError as e:
        raise as_http_exception(e)

    attempt, test = paper.attempt, paper.test
    return QuestionPaper(
        attempt_id=attempt.id,
        test_id=test.id,
        title=test.title,
        instructions=test.instructions,
        duration=test.duration,
        started_at=attempt.started_at,
        deadline=attempt_deadline(attempt, test),
        questions=[
            PaperQuestion(
                id=item.question.id,
                question_text=item.question.question_text,
                question_type=item.question.question_type,
                points=item.question.points,
                is_required=item.question.is_required,
                image_path=item.question.image_path,
                allow_multiple=item.question.allow_multiple,
                word_limit=item.question.word_limit,
                options=[PaperOption.model_validate(option) for option in item.options],
            )
            for item in paper.items
        ],
    )


@router.put(
    "/attempts/{attempt_id}/answers/{question_id}",
    response_model=AnswerResponse,
    summary="Record an answer",
    description="Record or replace the response to one question while the attempt is open.",
)
async def record_answer(
    attempt_id: int,
    question_id: int,
    data: AnswerSubmit,
    principal: StudentPrincipal,
    db: DbSession,
) -> AnswerResponse:
    try:
        answer = await AnswerRecorder(db).record_answer(principal, attempt_id, question_id, data)
    except AssessmentError as e:
        raise as_http_exception(e)
    return AnswerResponse.model_validate(answer)


@router.post(
    "/attempts/{attempt_id}/submit",
    response_model=AttemptResponse,
    summary="Submit an attempt",
    description="Score the attempt; it stays submitted while answers await manual grading.",
)
async def submit_attempt(
    attempt_id: int,
    principal: StudentPrincipal,
    db: DbSession,
    policy: Policy,
    background_tasks: BackgroundTasks,
    notifier: Notifier,
) -> AttemptResponse:
    try:
        attempt = await AttemptService(db, policy).submit_attempt(principal, attempt_id)
    except AssessmentError as e:
        raise as_http_exception(e)

    if attempt.status == AttemptStatus.GRADED:
        await db.commit()
        background_tasks.add_task(dispatch_notification, notifier, graded_event(attempt))
    return AttemptResponse.model_validate(attempt)


@router.post(
    "/attempts/{attempt_id}/grade",
    response_model=AttemptDetailResponse,
    summary="Grade an attempt",
    description="Assign manual points to answers and recompute the attempt's totals.",
)
async def grade_attempt(
    attempt_id: int,
    data: GradeRequest,
    principal: InstructorPrincipal,
    db: DbSession,
    policy: Policy,
    background_tasks: BackgroundTasks,
    notifier: Notifier,
) -> AttemptDetailResponse:
    try:
        attempt = await GradingService(db, policy).grade_attempt(principal, attempt_id, data)
        detail = await AttemptService(db, policy).get_attempt_detail(principal, attempt.id)
    except AssessmentError as e:
        raise as_http_exception(e)

    if attempt.status == AttemptStatus.GRADED:
        await db.commit()
        background_tasks.add_task(dispatch_notification, notifier, graded_event(attempt))
    return _detail_response(detail)
