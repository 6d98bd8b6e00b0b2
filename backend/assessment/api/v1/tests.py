"""
University Assessment Engine - Test Catalog API
Endpoints for authoring, listing, publishing and duplicating tests
"""
from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Query, status

from assessment.api.deps import (
    CurrentPrincipal,
    DbSession,
    InstructorPrincipal,
    Notifier,
    PageParams,
    Policy,
    StudentPrincipal,
    as_http_exception,
)
from assessment.core.security import PrincipalRole
from assessment.models.attempt import AttemptStatus
from assessment.schemas.attempt import (
    AttemptResponse,
    ResultsResponse,
    ResultsSummary,
    StudentAttemptsResponse,
)
from assessment.schemas.test import (
    AvailabilityStatus,
    SubjectTestCreate,
    SubjectTestListResponse,
    SubjectTestResponse,
    SubjectTestUpdate,
)
from assessment.services.attempts import AttemptService
from assessment.services.catalog import CatalogService
from assessment.services.exceptions import AssessmentError
from assessment.services.notifications import dispatch_notification, published_event

router = APIRouter(prefix="/tests", tags=["Tests"])


@router.get(
    "",
    response_model=SubjectTestListResponse,
    summary="List tests",
    description="Students see published tests, instructors their own, admins all.",
)
async def list_tests(
    principal: CurrentPrincipal,
    db: DbSession,
    pagination: PageParams,
    subject_id: int | None = None,
    group_id: int | None = None,
    instructor_id: int | None = None,
    is_published: bool | None = None,
    availability: AvailabilityStatus | None = None,
) -> SubjectTestListResponse:
    catalog = CatalogService(db)
    tests, total = await catalog.list_tests(
        principal,
        subject_id=subject_id,
        group_id=group_id,
        instructor_id=instructor_id,
        is_published=is_published,
        availability=availability,
        page=pagination.page,
        per_page=pagination.per_page,
    )
    return SubjectTestListResponse(
        items=[SubjectTestResponse.model_validate(test) for test in tests],
        total=total,
        page=pagination.page,
        per_page=pagination.per_page,
    )


@router.post(
    "",
    response_model=SubjectTestResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a test",
    description="Create an unpublished draft owned by the calling instructor.",
)
async def create_test(
    data: SubjectTestCreate,
    principal: InstructorPrincipal,
    db: DbSession,
) -> SubjectTestResponse:
    test = await CatalogService(db).create_test(principal, data)
    return SubjectTestResponse.model_validate(test)


@router.get("/{test_id}", response_model=SubjectTestResponse, summary="Get a test")
async def get_test(
    test_id: int,
    principal: CurrentPrincipal,
    db: DbSession,
) -> SubjectTestResponse:
    try:
        test = await CatalogService(db).get_test(principal, test_id)
    except AssessmentError as e:
        raise as_http_exception(e)

    response = SubjectTestResponse.model_validate(test)
    if principal.role != PrincipalRole.STUDENT:
        statistics = await AttemptService(db).attempt_statistics(test)
        response.attempt_stats = ResultsSummary.model_validate(statistics)
    return response


@router.patch("/{test_id}", response_model=SubjectTestResponse, summary="Update a test")
async def update_test(
    test_id: int,
    data: SubjectTestUpdate,
    principal: InstructorPrincipal,
    db: DbSession,
) -> SubjectTestResponse:
    try:
        test = await CatalogService(db).update_test(principal, test_id, data)
    except AssessmentError as e:
        raise as_http_exception(e)
    return SubjectTestResponse.model_validate(test)


@router.delete(
    "/{test_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a test",
    description="Soft delete. Refused once any attempt has been submitted.",
)
async def delete_test(
    test_id: int,
    principal: InstructorPrincipal,
    db: DbSession,
) -> None:
    try:
        await CatalogService(db).delete_test(principal, test_id)
    except AssessmentError as e:
        raise as_http_exception(e)


@router.post("/{test_id}/publish", response_model=SubjectTestResponse, summary="Publish a test")
async def publish_test(
    test_id: int,
    principal: InstructorPrincipal,
    db: DbSession,
    background_tasks: BackgroundTasks,
    notifier: Notifier,
) -> SubjectTestResponse:
    try:
        test = await CatalogService(db).publish_test(principal, test_id)
    except AssessmentError as e:
        raise as_http_exception(e)

    # Subscribers may read the test back as soon as they are notified
    await db.commit()
    background_tasks.add_task(dispatch_notification, notifier, published_event(test))
    return SubjectTestResponse.model_validate(test)


@router.post("/{test_id}/unpublish", response_model=SubjectTestResponse, summary="Unpublish a test")
async def unpublish_test(
    test_id: int,
    principal: InstructorPrincipal,
    db: DbSession,
) -> SubjectTestResponse:
    try:
        test = await CatalogService(db).unpublish_test(principal, test_id)
    except AssessmentError as e:
        raise as_http_exception(e)
    return SubjectTestResponse.model_validate(test)


@router.post(
    "/{test_id}/duplicate",
    response_model=SubjectTestResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Duplicate a test",
    description="Deep copy with active questions and options, as an unpublished draft.",
)
async def duplicate_test(
    test_id: int,
    principal: InstructorPrincipal,
    db: DbSession,
) -> SubjectTestResponse:
    try:
        test = await CatalogService(db).duplicate_test(principal, test_id)
    except AssessmentError as e:
        raise as_http_exception(e)
    return SubjectTestResponse.model_validate(test)


@router.get(
    "/{test_id}/results",
    response_model=ResultsResponse,
    summary="List results of a test",
)
async def list_results(
    test_id: int,
    principal: InstructorPrincipal,
    db: DbSession,
    policy: Policy,
    pagination: PageParams,
    student_id: int | None = None,
    attempt_status: Annotated[AttemptStatus | None, Query(alias="status")] = None,
    passed: bool | None = None,
) -> ResultsResponse:
    try:
        test = await CatalogService(db).get_owned_test(principal, test_id)
    except AssessmentError as e:
        raise as_http_exception(e)

    results = await AttemptService(db, policy).list_results(
        test,
        student_id=student_id,
        status=attempt_status,
        passed=passed,
        page=pagination.page,
        per_page=pagination.per_page,
    )
    return ResultsResponse(
        items=[AttemptResponse.model_validate(attempt) for attempt in results.attempts],
        total=results.statistics.total,
        page=pagination.page,
        per_page=pagination.per_page,
        summary=ResultsSummary.model_validate(results.statistics),
    )


@router.get(
    "/{test_id}/attempts",
    response_model=StudentAttemptsResponse,
    summary="List my attempts on a test",
    description="The calling student's attempts, best score and remaining attempts.",
)
async def list_own_attempts(
    test_id: int,
    principal: StudentPrincipal,
    db: DbSession,
) -> StudentAttemptsResponse:
    try:
        own = await AttemptService(db).list_own_attempts(principal, test_id)
    except AssessmentError as e:
        raise as_http_exception(e)

    return StudentAttemptsResponse(
        test_id=own.test.id,
        attempt_limit=own.test.attempt_limit,
        attempts_count=own.attempts_count,
        remaining_attempts=own.remaining_attempts,
        best_percentage=own.best_percentage,
        can_attempt=own.can_attempt,
        items=[AttemptResponse.model_validate(attempt) for attempt in own.attempts],
    )
