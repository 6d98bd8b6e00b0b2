"""
University Assessment Engine - Question Bank Tests
"""
import pytest

from assessment.models.question import QuestionType
from assessment.schemas.attempt import AnswerSubmit
from assessment.schemas.question import AnswerOptionCreate, AnswerOptionUpdate, QuestionUpdate
from assessment.services.answers import AnswerRecorder
from assessment.services.attempts import AttemptService
from assessment.services.exceptions import InvalidStateError, NotFoundError, ValidationFailure
from assessment.services.question_bank import QuestionBankService


@pytest.mark.asyncio
async def test_max_score_follows_every_question_change(db_session, instructor, make_test, question_payloads):
    """max_score and question_count always equal the active questions' totals."""
    test = await make_test()
    bank = QuestionBankService(db_session)
    assert (test.max_score, test.question_count) == (0.0, 0)

    mc = await bank.add_question(instructor, test.id, question_payloads["mc"](points=2))
    essay = await bank.add_question(instructor, test.id, question_payloads["essay"](points=5))
    assert (test.max_score, test.question_count) == (7.0, 2)

    await bank.update_question(instructor, test.id, essay.id, QuestionUpdate(points=3))
    assert (test.max_score, test.question_count) == (5.0, 2)

    copy = await bank.duplicate_question(instructor, test.id, mc.id)
    assert (test.max_score, test.question_count) == (7.0, 3)

    await bank.remove_question(instructor, test.id, copy.id)
    assert (test.max_score, test.question_count) == (5.0, 2)

    await bank.update_question(instructor, test.id, mc.id, QuestionUpdate(points=0))
    assert (test.max_score, test.question_count) == (3.0, 2)


@pytest.mark.asyncio
async def test_add_multiple_choice_with_inline_options(db_session, instructor, make_test, question_payloads):
    test = await make_test()
    question = await QuestionBankService(db_session).add_question(
        instructor, test.id, question_payloads["mc"]()
    )

    assert question.question_type == QuestionType.MULTIPLE_CHOICE
    assert [option.answer_text for option in question.options] == ["A", "B", "C"]
    assert [option.position for option in question.options] == [0, 1, 2]
    assert [option.is_correct for option in question.options] == [True, False, False]


@pytest.mark.asyncio
async def test_single_select_rejects_two_correct_options(db_session, instructor, make_test, question_payloads):
    test = await make_test()
    payload = question_payloads["mc"]()
    payload.options[1].is_correct = True

    with pytest.raises(ValidationFailure):
        await QuestionBankService(db_session).add_question(instructor, test.id, payload)


@pytest.mark.asyncio
async def test_questions_are_appended_in_position_order(db_session, instructor, make_test, question_payloads):
    test = await make_test()
    bank = QuestionBankService(db_session)
    first = await bank.add_question(instructor, test.id, question_payloads["tf"]())
    second = await bank.add_question(instructor, test.id, question_payloads["sa"]())

    assert (first.position, second.position) == (0, 1)
    listed = await bank.list_questions(instructor, test.id)
    assert [question.id for question in listed] == [first.id, second.id]


@pytest.mark.asyncio
async def test_question_type_is_immutable(db_session, instructor, make_test, question_payloads):
    test = await make_test()
    bank = QuestionBankService(db_session)
    question = await bank.add_question(instructor, test.id, question_payloads["tf"]())

    with pytest.raises(ValidationFailure) as exc_info:
        await bank.update_question(
            instructor, test.id, question.id, QuestionUpdate(question_type=QuestionType.ESSAY)
        )
    assert "question_type" in exc_info.value.errors


@pytest.mark.asyncio
async def test_update_rejects_fields_of_another_type(db_session, instructor, make_test, question_payloads):
    test = await make_test()
    bank = QuestionBankService(db_session)
    question = await bank.add_question(instructor, test.id, question_payloads["tf"]())

    with pytest.raises(ValidationFailure) as exc_info:
        await bank.update_question(
            instructor, test.id, question.id, QuestionUpdate(correct_answer_text="yes")
        )
    assert "correct_answer_text" in exc_info.value.errors

    updated = await bank.update_question(
        instructor, test.id, question.id, QuestionUpdate(correct_answer_boolean=False)
    )
    assert updated.correct_answer_boolean is False


@pytest.mark.asyncio
async def test_reorder_assigns_consecutive_positions(db_session, instructor, make_test, question_payloads):
    test = await make_test(
        questions=[question_payloads["tf"](), question_payloads["sa"](), question_payloads["essay"]()]
    )
    bank = QuestionBankService(db_session)
    ids = [question.id for question in await bank.list_questions(instructor, test.id)]

    reordered = await bank.reorder_questions(instructor, test.id, list(reversed(ids)))

    assert [question.id for question in reordered] == list(reversed(ids))
    assert [question.position for question in reordered] == [0, 1, 2]
    listed = await bank.list_questions(instructor, test.id)
    assert [question.id for question in listed] == list(reversed(ids))


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "mutate, error_key",
    [
        (lambda ids: ids[:-1], "missing"),
        (lambda ids: ids + [ids[0]], "question_ids"),
        (lambda ids: ids + [999_999], "unknown"),
    ],
)
async def test_reorder_requires_exact_active_set(
    db_session, instructor, make_test, question_payloads, mutate, error_key
):
    test = await make_test(questions=[question_payloads["tf"](), question_payloads["sa"]()])
    bank = QuestionBankService(db_session)
    ids = [question.id for question in await bank.list_questions(instructor, test.id)]

    with pytest.raises(ValidationFailure) as exc_info:
        await bank.reorder_questions(instructor, test.id, mutate(ids))
    assert error_key in exc_info.value.errors


@pytest.mark.asyncio
async def test_reorder_rejects_question_of_another_test(db_session, instructor, make_test, question_payloads):
    first = await make_test(questions=[question_payloads["tf"]()])
    second = await make_test(questions=[question_payloads["sa"]()])
    bank = QuestionBankService(db_session)
    own = [question.id for question in await bank.list_questions(instructor, first.id)]
    foreign = [question.id for question in await bank.list_questions(instructor, second.id)]

    with pytest.raises(ValidationFailure):
        await bank.reorder_questions(instructor, first.id, own + foreign)


@pytest.mark.asyncio
async def test_duplicate_question_copies_active_options(db_session, instructor, make_test, question_payloads):
    test = await make_test()
    bank = QuestionBankService(db_session)
    source = await bank.add_question(instructor, test.id, question_payloads["mc"]())
    await bank.add_question(instructor, test.id, question_payloads["tf"]())
    await bank.remove_option(instructor, test.id, source.id, source.options[2].id)

    copy = await bank.duplicate_question(instructor, test.id, source.id)

    assert copy.id != source.id
    assert copy.position == 2
    assert copy.question_text == source.question_text
    assert [option.answer_text for option in copy.options] == ["A", "B"]
    assert {option.id for option in copy.options}.isdisjoint({option.id for option in source.options})


@pytest.mark.asyncio
async def test_options_only_on_multiple_choice(db_session, instructor, make_test, question_payloads):
    test = await make_test()
    bank = QuestionBankService(db_session)
    question = await bank.add_question(instructor, test.id, question_payloads["sa"]())

    with pytest.raises(InvalidStateError):
        await bank.add_option(instructor, test.id, question.id, AnswerOptionCreate(answer_text="x"))


@pytest.mark.asyncio
async def test_second_correct_option_on_single_select(db_session, instructor, make_test, question_payloads):
    test = await make_test()
    bank = QuestionBankService(db_session)
    question = await bank.add_question(instructor, test.id, question_payloads["mc"]())

    with pytest.raises(ValidationFailure):
        await bank.add_option(
            instructor, test.id, question.id, AnswerOptionCreate(answer_text="D", is_correct=True)
        )
    with pytest.raises(ValidationFailure):
        await bank.update_option(
            instructor, test.id, question.id, question.options[1].id,
            AnswerOptionUpdate(is_correct=True),
        )

    option = await bank.add_option(instructor, test.id, question.id, AnswerOptionCreate(answer_text="D"))
    assert option.position == 3
    assert option.question_id == question.id


@pytest.mark.asyncio
async def test_multi_select_allows_several_correct(db_session, instructor, make_test, question_payloads):
    test = await make_test()
    bank = QuestionBankService(db_session)
    question = await bank.add_question(
        instructor, test.id, question_payloads["mc"](allow_multiple=True)
    )

    await bank.update_option(
        instructor, test.id, question.id, question.options[1].id, AnswerOptionUpdate(is_correct=True)
    )
    assert sum(option.is_correct for option in question.active_options) == 2

    with pytest.raises(ValidationFailure):
        await bank.update_question(instructor, test.id, question.id, QuestionUpdate(allow_multiple=False))


@pytest.mark.asyncio
async def test_removed_option_disappears(db_session, instructor, make_test, question_payloads):
    test = await make_test()
    bank = QuestionBankService(db_session)
    question = await bank.add_question(instructor, test.id, question_payloads["mc"]())
    removed = question.options[1]

    await bank.remove_option(instructor, test.id, question.id, removed.id)

    assert removed.id not in {option.id for option in question.active_options}
    with pytest.raises(NotFoundError):
        await bank.remove_option(instructor, test.id, question.id, removed.id)


@pytest.mark.asyncio
async def test_other_instructor_cannot_touch_questions(
    db_session, other_instructor, make_test, question_payloads
):
    test = await make_test()
    with pytest.raises(NotFoundError):
        await QuestionBankService(db_session).add_question(
            other_instructor, test.id, question_payloads["tf"]()
        )


@pytest.mark.asyncio
async def test_question_statistics_over_submitted_attempts(
    db_session, instructor, student, other_student, make_test, question_payloads
):
    test = await make_test(
        questions=[question_payloads["tf"](points=2, correct=True), question_payloads["essay"](points=4)],
        publish=True,
        attempt_limit=2,
    )
    bank = QuestionBankService(db_session)
    tf, essay = await bank.list_questions(instructor, test.id)
    attempts = AttemptService(db_session)
    recorder = AnswerRecorder(db_session)

    for principal, given in ((student, True), (other_student, False)):
        attempt = await attempts.start_attempt(principal, test.id)
        await recorder.record_answer(principal, attempt.id, tf.id, AnswerSubmit(answer_boolean=given))
        await attempts.submit_attempt(principal, attempt.id)

    # Answers on an open attempt are not counted
    retake = await attempts.start_attempt(student, test.id)
    await recorder.record_answer(student, retake.id, tf.id, AnswerSubmit(answer_boolean=True))

    statistics = await bank.question_statistics([tf.id, essay.id, 999_999])

    assert statistics[tf.id].total_answers == 2
    assert (statistics[tf.id].correct_answers, statistics[tf.id].incorrect_answers) == (1, 1)
    assert statistics[tf.id].pending_answers == 0
    assert statistics[tf.id].correct_percentage == 50.0
    assert statistics[tf.id].average_points == 1.0

    assert statistics[essay.id].total_answers == 2
    assert statistics[essay.id].pending_answers == 2
    assert statistics[essay.id].correct_percentage == 0.0
    assert statistics[essay.id].average_points == 0.0

    assert statistics[999_999].total_answers == 0
