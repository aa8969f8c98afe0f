import logging

import pytest

from quiz_engine.core.errors import InvalidAnswer, UnknownQuestion
from quiz_engine.services.scoring import grade_submission

KEYS = {i: "A" for i in range(1, 11)}


def test_seven_correct_one_wrong_two_skipped():
    submitted = [(i, "A") for i in range(1, 8)] + [(8, "B")]
    sheet = grade_submission(list(KEYS), KEYS, submitted)
    assert (sheet.correct, sheet.wrong, sheet.skipped) == (7, 1, 2)
    assert sheet.score == pytest.approx(70.0)
    assert sheet.wrong_ids == [8]
    assert sheet.correct_ids == list(range(1, 8))


def test_multi_answer_ignores_order():
    sheet = grade_submission([1], {1: "A,B"}, [(1, "B,A")])
    assert sheet.correct == 1
    assert sheet.graded[0].user_answer == "A,B"


def test_partial_multi_answer_is_wrong():
    sheet = grade_submission([1], {1: "A,B"}, [(1, "A")])
    assert (sheet.correct, sheet.wrong) == (0, 1)


def test_empty_answer_counts_as_skip_not_wrong():
    sheet = grade_submission([1, 2], {1: "A", 2: "A"}, [(1, ""), (2, None)])
    assert (sheet.correct, sheet.wrong, sheet.skipped) == (0, 0, 2)
    assert sheet.score == 0.0


def test_graded_in_question_order():
    sheet = grade_submission([5, 3, 9], {5: "A", 3: "B", 9: "C"}, [(9, "C"), (5, "A")])
    assert [g.question_id for g in sheet.graded] == [5, 3, 9]
    assert [g.question_order for g in sheet.graded] == [0, 1, 2]


def test_unknown_question_rejected():
    with pytest.raises(UnknownQuestion) as exc:
        grade_submission([1, 2], {1: "A", 2: "A"}, [(1, "A"), (99, "A")], attempt_id="att")
    assert exc.value.question_ids == [99]


def test_duplicate_answer_rejected():
    with pytest.raises(InvalidAnswer):
        grade_submission([1], {1: "A"}, [(1, "A"), (1, "B")])


def test_letter_outside_question_options_is_wrong():
    sheet = grade_submission([1], {1: "A"}, [(1, "E")])
    assert sheet.wrong == 1


def test_malformed_answer_key_grades_wrong_and_is_logged(caplog):
    with caplog.at_level(logging.ERROR, logger="quiz_engine.services.scoring"):
        sheet = grade_submission([1, 2], {1: "AB", 2: "A"}, [(1, "A"), (2, "A")])
    assert (sheet.correct, sheet.wrong, sheet.skipped) == (1, 1, 0)
    assert sheet.wrong_ids == [1]
    assert "malformed answer key" in caplog.text
