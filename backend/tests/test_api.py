"""
University Assessment Engine - HTTP API Tests
"""
import pytest
from httpx import AsyncClient

from assessment.api.deps import get_notification_sink
from assessment.main import app
from assessment.models.attempt import StudentAttempt
from assessment.models.test import SubjectTest
from assessment.services.exceptions import DependencyFailure
from assessment.services.notifications import NotificationEvent

API = "/api/v1"


class RecordingSink:
    """Collects notifications instead of delivering them."""

    def __init__(self):
        self.sent = []

    async def send(self, notification) -> None:
        self.sent.append(notification)


class CommittedStateSink:
    """Reads the notified row back through a separate session, as a subscriber would."""

    def __init__(self, session_factory):
        self.session_factory = session_factory
        self.seen = []

    async def send(self, notification) -> None:
        async with self.session_factory() as session:
            if "attempt_id" in notification.payload:
                attempt = await session.get(StudentAttempt, notification.payload["attempt_id"])
                self.seen.append(attempt.status.value)
            else:
                test = await session.get(SubjectTest, notification.payload["test_id"])
                self.seen.append(test.is_published)


@pytest.fixture
def recording_sink(client):
    sink = RecordingSink()
    app.dependency_overrides[get_notification_sink] = lambda: sink
    return sink


def tf_payload(correct: bool = True, points: float = 1.0) -> dict:
    return {
        "question_type": "true_false",
        "question_text": "A basis spans the space.",
        "points": points,
        "correct_answer_boolean": correct,
    }


def mc_payload() -> dict:
    return {
        "question_type": "multiple_choice",
        "question_text": "Which matrix is singular?",
        "points": 2,
        "options": [
            {"answer_text": "A", "is_correct": True},
            {"answer_text": "B"},
            {"answer_text": "C"},
        ],
    }


async def create_published_test(client, headers, sample_test_data, questions) -> dict:
    response = await client.post(f"{API}/tests", json=sample_test_data, headers=headers)
    assert response.status_code == 201
    test = response.json()

    for payload in questions:
        response = await client.post(
            f"{API}/tests/{test['id']}/questions", json=payload, headers=headers
        )
        assert response.status_code == 201

    response = await client.post(f"{API}/tests/{test['id']}/publish", headers=headers)
    assert response.status_code == 200
    return response.json()


# ============================================================================
# Health & auth
# ============================================================================

@pytest.mark.asyncio
async def test_health_check(client: AsyncClient):
    """Test the health check endpoints."""
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"

    response = await client.get(f"{API}/health")
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_missing_or_bad_token_is_unauthorized(client: AsyncClient):
    response = await client.get(f"{API}/tests")
    assert response.status_code == 401

    response = await client.get(f"{API}/tests", headers={"Authorization": "Bearer not-a-token"})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_roles_are_enforced(client: AsyncClient, student, instructor, auth_headers, sample_test_data):
    response = await client.post(f"{API}/tests", json=sample_test_data, headers=auth_headers(student))
    assert response.status_code == 403

    response = await client.post(f"{API}/attempts/sweep", headers=auth_headers(instructor))
    assert response.status_code == 403


# ============================================================================
# Authoring
# ============================================================================

@pytest.mark.asyncio
async def test_create_test_rejects_inverted_window(
    client: AsyncClient, instructor, auth_headers, sample_test_data
):
    payload = {
        **sample_test_data,
        "start_date": "2030-01-10T00:00:00Z",
        "end_date": "2030-01-01T00:00:00Z",
    }
    response = await client.post(f"{API}/tests", json=payload, headers=auth_headers(instructor))
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_question_bank_over_http(client: AsyncClient, instructor, auth_headers, sample_test_data):
    headers = auth_headers(instructor)
    test = (await client.post(f"{API}/tests", json=sample_test_data, headers=headers)).json()
    base = f"{API}/tests/{test['id']}/questions"

    mc = (await client.post(base, json=mc_payload(), headers=headers)).json()
    tf = (await client.post(base, json=tf_payload(), headers=headers)).json()
    assert [option["answer_text"] for option in mc["options"]] == ["A", "B", "C"]

    response = await client.post(
        f"{base}/{mc['id']}/options", json={"answer_text": "D"}, headers=headers
    )
    assert response.status_code == 201
    option_d = response.json()

    response = await client.delete(f"{base}/{mc['id']}/options/{option_d['id']}", headers=headers)
    assert response.status_code == 204

    response = await client.put(
        f"{base}/reorder", json={"question_ids": [tf["id"], mc["id"]]}, headers=headers
    )
    assert response.status_code == 200
    assert [question["id"] for question in response.json()] == [tf["id"], mc["id"]]

    response = await client.patch(
        f"{base}/{tf['id']}", json={"question_type": "essay"}, headers=headers
    )
    assert response.status_code == 422
    assert response.json()["detail"]["code"] == "validation_failed"

    response = await client.get(f"{API}/tests/{test['id']}", headers=headers)
    assert response.json()["max_score"] == 3.0
    assert response.json()["question_count"] == 2


@pytest.mark.asyncio
async def test_publish_without_questions_is_a_conflict(
    client: AsyncClient, instructor, auth_headers, sample_test_data, recording_sink
):
    headers = auth_headers(instructor)
    test = (await client.post(f"{API}/tests", json=sample_test_data, headers=headers)).json()

    response = await client.post(f"{API}/tests/{test['id']}/publish", headers=headers)

    assert response.status_code == 409
    detail = response.json()["detail"]
    assert detail["code"] == "invalid_state"
    assert set(detail) == {"code", "message", "errors"}
    assert recording_sink.sent == []


@pytest.mark.asyncio
async def test_publish_notifies(
    client: AsyncClient, instructor, auth_headers, sample_test_data, recording_sink
):
    test = await create_published_test(client, auth_headers(instructor), sample_test_data, [tf_payload()])

    assert test["is_published"] is True
    assert [n.event for n in recording_sink.sent] == [NotificationEvent.TEST_PUBLISHED]
    assert recording_sink.sent[0].payload["test_id"] == test["id"]


@pytest.mark.asyncio
async def test_publish_is_committed_before_notifying(
    client: AsyncClient, instructor, student, auth_headers, sample_test_data, session_factory
):
    sink = CommittedStateSink(session_factory)
    app.dependency_overrides[get_notification_sink] = lambda: sink
    test = await create_published_test(client, auth_headers(instructor), sample_test_data, [tf_payload()])
    assert sink.seen == [True]

    student_headers = auth_headers(student)
    attempt = (await client.post(f"{API}/tests/{test['id']}/attempts", headers=student_headers)).json()
    response = await client.post(f"{API}/attempts/{attempt['id']}/submit", headers=student_headers)
    assert response.json()["status"] == "graded"
    assert sink.seen == [True, "graded"]


@pytest.mark.asyncio
async def test_manual_grade_is_committed_before_notifying(
    client: AsyncClient, instructor, student, auth_headers, sample_test_data, session_factory
):
    sink = CommittedStateSink(session_factory)
    app.dependency_overrides[get_notification_sink] = lambda: sink
    instructor_headers = auth_headers(instructor)
    student_headers = auth_headers(student)
    essay = {"question_type": "essay", "question_text": "Discuss.", "points": 4}
    test = await create_published_test(client, instructor_headers, sample_test_data, [essay])

    attempt = (await client.post(f"{API}/tests/{test['id']}/attempts", headers=student_headers)).json()
    await client.post(f"{API}/attempts/{attempt['id']}/submit", headers=student_headers)
    detail = (await client.get(f"{API}/attempts/{attempt['id']}", headers=instructor_headers)).json()

    response = await client.post(
        f"{API}/attempts/{attempt['id']}/grade",
        json={"grades": [{"answer_id": detail["answers"][0]["id"], "points_earned": 2}]},
        headers=instructor_headers,
    )
    assert response.status_code == 200
    assert sink.seen == [True, "graded"]


# ============================================================================
# Attempt flow
# ============================================================================

@pytest.mark.asyncio
async def test_full_attempt_flow(
    client: AsyncClient,
    instructor,
    student,
    auth_headers,
    sample_test_data,
    recording_sink,
):
    instructor_headers = auth_headers(instructor)
    student_headers = auth_headers(student)
    test = await create_published_test(
        client, instructor_headers, sample_test_data, [mc_payload(), tf_payload(correct=False)]
    )

    response = await client.post(
        f"{API}/tests/{test['id']}/attempts",
        headers={**student_headers, "User-Agent": "exam-browser/1.0"},
    )
    assert response.status_code == 201
    attempt = response.json()
    assert attempt["status"] == "started"
    assert attempt["attempt_number"] == 1

    response = await client.get(f"{API}/attempts/{attempt['id']}/questions", headers=student_headers)
    assert response.status_code == 200
    paper = response.json()
    assert paper["deadline"] is not None
    mc = next(q for q in paper["questions"] if q["question_type"] == "multiple_choice")
    tf = next(q for q in paper["questions"] if q["question_type"] == "true_false")
    assert all("is_correct" not in option for option in mc["options"])
    assert "correct_answer_boolean" not in tf

    option_a = next(option for option in mc["options"] if option["answer_text"] == "A")
    response = await client.put(
        f"{API}/attempts/{attempt['id']}/answers/{mc['id']}",
        json={"selected_option_ids": [option_a["id"]]},
        headers=student_headers,
    )
    assert response.status_code == 200
    assert response.json()["selected_option_ids"] == [option_a["id"]]
    assert response.json()["is_correct"] is None

    response = await client.put(
        f"{API}/attempts/{attempt['id']}/answers/{tf['id']}",
        json={"answer_text": "false"},
        headers=student_headers,
    )
    assert response.status_code == 422
    assert "answer_boolean" in response.json()["detail"]["errors"]

    response = await client.post(f"{API}/attempts/{attempt['id']}/submit", headers=student_headers)
    assert response.status_code == 200
    submitted = response.json()
    assert submitted["status"] == "graded"
    assert (submitted["total_score"], submitted["max_score"]) == (2.0, 3.0)
    assert submitted["percentage"] == 66.67
    assert submitted["passed"] is True
    assert recording_sink.sent[-1].event == NotificationEvent.ATTEMPT_GRADED

    response = await client.post(f"{API}/tests/{test['id']}/attempts", headers=student_headers)
    assert response.status_code == 403
    assert response.json()["detail"]["code"] == "limit_exceeded"

    response = await client.post(f"{API}/attempts/{attempt['id']}/submit", headers=student_headers)
    assert response.status_code == 409

    response = await client.get(f"{API}/attempts/{attempt['id']}", headers=student_headers)
    detail = response.json()
    assert len(detail["answers"]) == 2
    assert all(answer["correct_answer"] is None for answer in detail["answers"])

    response = await client.get(
        f"{API}/tests/{test['id']}/results", params={"status": "graded"}, headers=instructor_headers
    )
    assert response.status_code == 200
    results = response.json()
    assert results["total"] == 1
    assert results["summary"]["average_percentage"] == 66.67
    assert results["summary"]["pass_rate"] == 100.0

    response = await client.delete(f"{API}/tests/{test['id']}", headers=instructor_headers)
    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "conflict"


@pytest.mark.asyncio
async def test_manual_grading_over_http(
    client: AsyncClient, instructor, student, auth_headers, sample_test_data, recording_sink
):
    instructor_headers = auth_headers(instructor)
    student_headers = auth_headers(student)
    essay = {"question_type": "essay", "question_text": "Discuss.", "points": 4}
    test = await create_published_test(client, instructor_headers, sample_test_data, [essay])

    attempt = (
        await client.post(f"{API}/tests/{test['id']}/attempts", headers=student_headers)
    ).json()
    paper = (
        await client.get(f"{API}/attempts/{attempt['id']}/questions", headers=student_headers)
    ).json()
    await client.put(
        f"{API}/attempts/{attempt['id']}/answers/{paper['questions'][0]['id']}",
        json={"answer_text": "It depends."},
        headers=student_headers,
    )
    submitted = (
        await client.post(f"{API}/attempts/{attempt['id']}/submit", headers=student_headers)
    ).json()
    assert submitted["status"] == "submitted"
    assert all(n.event != NotificationEvent.ATTEMPT_GRADED for n in recording_sink.sent)

    detail = (await client.get(f"{API}/attempts/{attempt['id']}", headers=instructor_headers)).json()
    answer_id = detail["answers"][0]["id"]

    response = await client.post(
        f"{API}/attempts/{attempt['id']}/grade",
        json={"grades": [{"answer_id": answer_id, "points_earned": 3, "feedback": "Fair"}]},
        headers=instructor_headers,
    )
    assert response.status_code == 200
    graded = response.json()
    assert graded["status"] == "graded"
    assert graded["total_score"] == 3.0
    assert graded["answers"][0]["manually_graded"] is True
    assert graded["answers"][0]["correct_answer"] is not None
    assert recording_sink.sent[-1].event == NotificationEvent.ATTEMPT_GRADED

    response = await client.post(
        f"{API}/attempts/{attempt['id']}/grade",
        json={"grades": [{"answer_id": answer_id, "points_earned": 5}]},
        headers=instructor_headers,
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_admin_sweep(client: AsyncClient, admin, auth_headers):
    response = await client.post(f"{API}/attempts/sweep", headers=auth_headers(admin))
    assert response.status_code == 200
    assert response.json() == {"abandoned": 0}


@pytest.mark.asyncio
async def test_notification_failure_does_not_fail_the_request(
    client: AsyncClient, instructor, auth_headers, sample_test_data
):
    class FailingSink:
        async def send(self, notification) -> None:
            raise DependencyFailure("webhook down")

    app.dependency_overrides[get_notification_sink] = lambda: FailingSink()

    test = await create_published_test(client, auth_headers(instructor), sample_test_data, [tf_payload()])
    assert test["is_published"] is True


@pytest.mark.asyncio
async def test_statistics_and_own_attempts_over_http(
    client: AsyncClient, instructor, student, other_student, auth_headers, sample_test_data, recording_sink
):
    instructor_headers = auth_headers(instructor)
    student_headers = auth_headers(student)
    test = await create_published_test(
        client, instructor_headers, sample_test_data, [tf_payload(correct=True, points=2)]
    )

    response = await client.get(f"{API}/tests/{test['id']}/attempts", headers=student_headers)
    assert response.status_code == 200
    own = response.json()
    assert (own["attempts_count"], own["remaining_attempts"], own["can_attempt"]) == (0, 1, True)
    assert own["best_percentage"] is None

    for principal, given in ((student, True), (other_student, False)):
        headers = auth_headers(principal)
        attempt = (await client.post(f"{API}/tests/{test['id']}/attempts", headers=headers)).json()
        paper = (await client.get(f"{API}/attempts/{attempt['id']}/questions", headers=headers)).json()
        await client.put(
            f"{API}/attempts/{attempt['id']}/answers/{paper['questions'][0]['id']}",
            json={"answer_boolean": given},
            headers=headers,
        )
        await client.post(f"{API}/attempts/{attempt['id']}/submit", headers=headers)

    own = (await client.get(f"{API}/tests/{test['id']}/attempts", headers=student_headers)).json()
    assert (own["attempts_count"], own["remaining_attempts"], own["can_attempt"]) == (1, 0, False)
    assert own["best_percentage"] == 100.0
    assert [item["status"] for item in own["items"]] == ["graded"]

    response = await client.get(f"{API}/tests/{test['id']}/attempts", headers=instructor_headers)
    assert response.status_code == 403

    questions = (
        await client.get(f"{API}/tests/{test['id']}/questions", headers=instructor_headers)
    ).json()
    statistics = questions[0]["statistics"]
    assert (statistics["total_answers"], statistics["correct_answers"]) == (2, 1)
    assert statistics["incorrect_answers"] == 1
    assert statistics["correct_percentage"] == 50.0
    assert statistics["average_points"] == 1.0

    single = (
        await client.get(
            f"{API}/tests/{test['id']}/questions/{questions[0]['id']}", headers=instructor_headers
        )
    ).json()
    assert single["statistics"] == statistics

    detail = (await client.get(f"{API}/tests/{test['id']}", headers=instructor_headers)).json()
    assert (detail["is_available"], detail["is_expired"]) == (True, False)
    assert detail["attempt_stats"]["total"] == 2
    assert detail["attempt_stats"]["average_percentage"] == 50.0
    assert detail["attempt_stats"]["average_score"] == 1.0
    assert detail["attempt_stats"]["pass_rate"] == 50.0

    detail = (await client.get(f"{API}/tests/{test['id']}", headers=student_headers)).json()
    assert detail["attempt_stats"] is None
