"""
Scoring engine.

Grading is all-or-nothing per question: the submitted letter set must equal the
answer key's letter set. A missing or empty answer is a skip. It is never
correct, and it is counted apart from wrong answers.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session

from quiz_engine.core.auth import TokenData
from quiz_engine.core.errors import AlreadyCompleted, InvalidAnswer, NotFound, UnknownQuestion
from quiz_engine.services.answers import format_answer, parse_answer
from quiz_engine.services.attempts import (
    attempt_view, complete_attempt, ensure_access, load_attempt, save_graded_answers,
)
from quiz_engine.services.question_store import load_questions
from quiz_engine.services.stats import record_attempt_score, record_outcomes

logger = logging.getLogger(__name__)


@dataclass
class GradedAnswer:
    question_id: int
    question_order: int
    user_answer: Optional[str]
    is_correct: bool

    @property
    def skipped(self) -> bool:
        return self.user_answer is None


@dataclass
class ScoreSheet:
    graded: List[GradedAnswer] = field(default_factory=list)

    @property
    def total_questions(self) -> int:
        return len(self.graded)

    @property
    def correct(self) -> int:
        return sum(1 for g in self.graded if g.is_correct)

    @property
    def skipped(self) -> int:
        return sum(1 for g in self.graded if g.skipped)

    @property
    def wrong(self) -> int:
        return self.total_questions - self.correct - self.skipped

    @property
    def score(self) -> float:
        if not self.graded:
            return 0.0
        return 100.0 * self.correct / self.total_questions

    @property
    def correct_ids(self) -> List[int]:
        return [g.question_id for g in self.graded if g.is_correct]

    @property
    def wrong_ids(self) -> List[int]:
        return [g.question_id for g in self.graded if not g.is_correct and not g.skipped]


def _parse_key(question_id: int, raw: Optional[str]):
    try:
        return parse_answer(raw)
    except InvalidAnswer:
        logger.error("Question %s has a malformed answer key %r; grading it as wrong", question_id, raw)
        return None


def grade_submission(question_ids: List[int], answer_keys: Dict[int, str],
                     submitted: Iterable[Tuple[int, Optional[str]]],
                     attempt_id: Optional[str] = None) -> ScoreSheet:
    """Grade every selected question; unanswered ones count as skipped.

    Raises :class:`UnknownQuestion` for answers to questions outside
    ``question_ids`` and :class:`InvalidAnswer` for duplicates or letters
    outside A-E. Nothing is graded when either is raised.
    """
    selected = set(question_ids)
    responses = {}
    unknown = []
    for question_id, raw in submitted:
        if question_id not in selected:
            unknown.append(question_id)
            continue
        if question_id in responses:
            raise InvalidAnswer(f"Question {question_id} answered more than once")
        responses[question_id] = parse_answer(raw)
    if unknown:
        raise UnknownQuestion(unknown, attempt_id)

    sheet = ScoreSheet()
    for order, question_id in enumerate(question_ids):
        user = responses.get(question_id)
        key = _parse_key(question_id, answer_keys.get(question_id))
        is_correct = user is not None and key is not None and user == key
        sheet.graded.append(GradedAnswer(question_id, order, format_answer(user), is_correct))
    return sheet


@dataclass
class SubmitResult:
    attempt: dict
    already_completed: bool = False


def submit_attempt(db: Session, attempt_id: str, user: TokenData,
                   answers: Iterable[Tuple[int, Optional[str]]], time_spent: Optional[int] = None) -> SubmitResult:
    """Grade and complete an attempt exactly once.

    Submitting an already completed attempt returns the stored result and
    touches no counters.
    """
    attempt = load_attempt(db, attempt_id)
    if attempt is None:
        raise NotFound(f"Attempt {attempt_id} not found")
    ensure_access(attempt, user)
    if attempt.is_completed:
        logger.info("Attempt %s already completed, returning stored result", attempt_id)
        return SubmitResult(attempt_view(db, attempt), already_completed=True)

    questions = load_questions(db, attempt.question_ids)
    sheet = grade_submission(
        attempt.question_ids, {qid: q.correct_answer for qid, q in questions.items()}, answers, attempt_id
    )
    try:
        won = complete_attempt(
            db, attempt_id, score=sheet.score, correct=sheet.correct, wrong=sheet.wrong,
            skipped=sheet.skipped, time_spent=time_spent,
        )
        if not won:
            raise AlreadyCompleted(attempt_id)
        save_graded_answers(db, attempt_id, sheet.graded)
        record_outcomes(db, sheet.correct_ids, sheet.wrong_ids)
        record_attempt_score(db, attempt.subject_id, attempt.block_id, sheet.score)
        db.commit()
    except AlreadyCompleted:
        db.rollback()
        logger.warning("Attempt %s was completed by a concurrent submit", attempt_id)
        return SubmitResult(attempt_view(db, load_attempt(db, attempt_id)), already_completed=True)
    except Exception:
        db.rollback()
        raise

    logger.info(
        "Attempt %s completed: score=%.2f correct=%d wrong=%d skipped=%d",
        attempt_id, sheet.score, sheet.correct, sheet.wrong, sheet.skipped,
    )
    return SubmitResult(attempt_view(db, load_attempt(db, attempt_id)))
