import pytest

from quiz_engine.core.errors import Forbidden, InvalidAnswer, NotFound, UnknownQuestion
from quiz_engine.models.orm import AttemptMode, AttemptStatus, QuizAttempt, QuizBlock, QuizQuestion, Subject
from quiz_engine.services.scoring import submit_attempt
from quiz_engine.services.selector import start_attempt


@pytest.fixture
def block_attempt(db, seed, student):
    seed.subject()
    seed.block()
    seed.questions(10, block_id="cardio-1", correct="A")
    return start_attempt(db, student.sub, AttemptMode.BLOCK, block_id="cardio-1")


def _counters(db):
    db.expire_all()
    return {q.id: (q.times_shown, q.times_correct, q.times_wrong) for q in db.query(QuizQuestion)}


def test_submit_grades_and_completes(db, block_attempt, student):
    ids = block_attempt.question_ids
    answers = [(qid, "A") for qid in ids[:7]] + [(ids[7], "B")]
    result = submit_attempt(db, block_attempt.id, student, answers, time_spent=300)
    view = result.attempt
    assert not result.already_completed
    assert view["status"] == "COMPLETED"
    assert view["score"] == pytest.approx(70.0)
    assert (view["correct_answers"], view["wrong_answers"], view["skipped_answers"]) == (7, 1, 2)
    assert view["time_spent"] == 300
    assert view["completed_at"] is not None
    assert [a["question_id"] for a in view["answers"]] == ids
    assert view["answers"][0]["correct_answer"] == "A"
    assert view["answers"][0]["explanation"]
    assert view["answers"][9]["user_answer"] is None

    counters = _counters(db)
    assert counters[ids[0]] == (1, 1, 0)
    assert counters[ids[7]] == (1, 0, 1)
    assert counters[ids[9]] == (1, 0, 0)

    block = db.get(QuizBlock, "cardio-1")
    subject = db.get(Subject, "cardio")
    assert (block.total_attempts, block.average_score) == (1, pytest.approx(70.0))
    assert (subject.total_attempts, subject.average_score) == (1, pytest.approx(70.0))


def test_second_submit_returns_stored_result_without_recounting(db, block_attempt, student):
    ids = block_attempt.question_ids
    first = submit_attempt(db, block_attempt.id, student, [(qid, "A") for qid in ids])
    before = _counters(db)
    second = submit_attempt(db, block_attempt.id, student, [(qid, "B") for qid in ids])
    assert second.already_completed
    assert second.attempt["score"] == first.attempt["score"] == pytest.approx(100.0)
    assert _counters(db) == before
    assert db.get(QuizBlock, "cardio-1").total_attempts == 1


def test_unknown_question_leaves_attempt_open(db, block_attempt, student):
    with pytest.raises(UnknownQuestion):
        submit_attempt(db, block_attempt.id, student, [(block_attempt.question_ids[0], "A"), (999999, "A")])
    db.expire_all()
    attempt = db.get(QuizAttempt, block_attempt.id)
    assert attempt.status == AttemptStatus.OPEN
    assert all(c[1:] == (0, 0) for c in _counters(db).values())


def test_invalid_letter_leaves_attempt_open(db, block_attempt, student):
    with pytest.raises(InvalidAnswer):
        submit_attempt(db, block_attempt.id, student, [(block_attempt.question_ids[0], "Q")])
    db.expire_all()
    assert db.get(QuizAttempt, block_attempt.id).status == AttemptStatus.OPEN


def test_other_user_cannot_submit(db, block_attempt, other_student):
    with pytest.raises(Forbidden):
        submit_attempt(db, block_attempt.id, other_student, [])


def test_admin_may_submit_for_user(db, block_attempt, admin):
    result = submit_attempt(db, block_attempt.id, admin, [])
    assert result.attempt["skipped_answers"] == 10
    assert result.attempt["score"] == 0.0


def test_missing_attempt(db, student):
    with pytest.raises(NotFound):
        submit_attempt(db, "does-not-exist", student, [])


def test_streaming_mean_over_attempts(db, seed, student):
    seed.subject()
    seed.block()
    seed.questions(4, block_id="cardio-1")
    for correct in (4, 2, 1):
        attempt = start_attempt(db, student.sub, AttemptMode.BLOCK, block_id="cardio-1")
        ids = attempt.question_ids
        submit_attempt(db, attempt.id, student, [(qid, "A") for qid in ids[:correct]])
    db.expire_all()
    block = db.get(QuizBlock, "cardio-1")
    assert block.total_attempts == 3
    assert block.average_score == pytest.approx((100.0 + 50.0 + 25.0) / 3)
