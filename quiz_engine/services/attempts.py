"""
Attempt persistence and the attempt read path.

An attempt owns one answer row per selected question from the moment it is
created. Submission updates those rows in place and moves the attempt from
OPEN to COMPLETED through a conditional update, the single synchronization
point between concurrent submits.
"""
import logging
import math
from datetime import datetime
from typing import Iterable, List, Optional, Tuple
from uuid import uuid4

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from quiz_engine.core.auth import TokenData
from quiz_engine.core.errors import Forbidden, NotFound
from quiz_engine.core.retry import NO_RETRY, RetryPolicy
from quiz_engine.models.orm import (
    AttemptMode, AttemptStatus, QuizAnswer, QuizAttempt, QuizBlock, QuizQuestion,
)
from quiz_engine.services.question_store import load_questions, question_payload

logger = logging.getLogger(__name__)


def create_attempt(db: Session, user_id: str, mode: AttemptMode, question_ids: List[int],
                   subject_id: Optional[str] = None, block_id: Optional[str] = None) -> QuizAttempt:
    attempt = QuizAttempt(
        id=str(uuid4()), user_id=user_id, mode=mode, subject_id=subject_id, block_id=block_id,
        question_ids=list(question_ids), total_questions=len(question_ids),
        status=AttemptStatus.OPEN, started_at=datetime.utcnow(),
    )
    db.add(attempt)
    db.add_all(
        QuizAnswer(attempt_id=attempt.id, question_id=qid, question_order=pos, user_answer=None, is_correct=None)
        for pos, qid in enumerate(question_ids)
    )
    db.flush()
    return attempt


def load_attempt(db: Session, attempt_id: str) -> Optional[QuizAttempt]:
    return db.scalar(
        select(QuizAttempt).where(QuizAttempt.id == attempt_id).execution_options(populate_existing=True)
    )


def fetch_attempt(db: Session, attempt_id: str, retry: RetryPolicy = NO_RETRY) -> QuizAttempt:
    """Load an attempt, retrying not-found reads that may be replication lag."""
    def _load() -> QuizAttempt:
        attempt = load_attempt(db, attempt_id)
        if attempt is None:
            # end the read transaction so the next try sees fresh commits
            db.rollback()
            raise NotFound(f"Attempt {attempt_id} not found")
        return attempt
    return retry.run(_load, retry_on=(NotFound,))


def ensure_access(attempt: QuizAttempt, user: TokenData) -> None:
    if attempt.user_id != user.sub and not user.is_admin:
        raise Forbidden()


def load_answers(db: Session, attempt_id: str) -> List[QuizAnswer]:
    return list(db.scalars(
        select(QuizAnswer).where(QuizAnswer.attempt_id == attempt_id)
        .order_by(QuizAnswer.question_order)
        .execution_options(populate_existing=True)
    ))


def complete_attempt(db: Session, attempt_id: str, *, score: float, correct: int, wrong: int,
                     skipped: int, time_spent: Optional[int]) -> bool:
    """Move an OPEN attempt to COMPLETED; False when another submit got there first."""
    result = db.execute(
        update(QuizAttempt)
        .where(QuizAttempt.id == attempt_id, QuizAttempt.status == AttemptStatus.OPEN)
        .values(
            status=AttemptStatus.COMPLETED, completed_at=datetime.utcnow(), score=score,
            correct_answers=correct, wrong_answers=wrong, skipped_answers=skipped, time_spent=time_spent,
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def save_graded_answers(db: Session, attempt_id: str, graded: Iterable) -> None:
    rows = {a.question_id: a for a in load_answers(db, attempt_id)}
    for g in graded:
        row = rows[g.question_id]
        row.user_answer = g.user_answer
        row.is_correct = g.is_correct
    db.flush()


def attempt_summary(attempt: QuizAttempt) -> dict:
    return {
        "attempt_id": attempt.id,
        "user_id": attempt.user_id,
        "mode": attempt.mode.value,
        "subject_id": attempt.subject_id,
        "block_id": attempt.block_id,
        "status": attempt.status.value,
        "is_completed": attempt.is_completed,
        "total_questions": attempt.total_questions,
        "score": attempt.score,
        "correct_answers": attempt.correct_answers,
        "wrong_answers": attempt.wrong_answers,
        "skipped_answers": attempt.skipped_answers,
        "time_spent": attempt.time_spent,
        "started_at": attempt.started_at,
        "completed_at": attempt.completed_at,
    }


def attempt_view(db: Session, attempt: QuizAttempt) -> dict:
    """Attempt with its questions; graded answers only once it is completed."""
    questions = load_questions(db, attempt.question_ids)
    view = attempt_summary(attempt)
    view["questions"] = [question_payload(questions[qid]) for qid in attempt.question_ids if qid in questions]
    view["answers"] = []
    if attempt.is_completed:
        for a in load_answers(db, attempt.id):
            q = questions.get(a.question_id)
            view["answers"].append({
                "question_id": a.question_id,
                "question_order": a.question_order,
                "user_answer": a.user_answer,
                "is_correct": a.is_correct,
                "correct_answer": q.correct_answer if q else None,
                "explanation": q.explanation if q else None,
            })
    return view


def get_attempt(db: Session, attempt_id: str, user: TokenData, retry: RetryPolicy = NO_RETRY) -> dict:
    attempt = fetch_attempt(db, attempt_id, retry)
    ensure_access(attempt, user)
    return attempt_view(db, attempt)


def find_active_attempt(db: Session, user_id: str) -> Optional[QuizAttempt]:
    return db.scalar(
        select(QuizAttempt)
        .where(QuizAttempt.user_id == user_id, QuizAttempt.status == AttemptStatus.OPEN)
        .order_by(QuizAttempt.started_at.desc())
        .limit(1)
    )


def list_results(db: Session, user_id: str, mode: Optional[AttemptMode] = None, subject_id: Optional[str] = None,
                 page: int = 1, page_size: int = 20) -> Tuple[List[QuizAttempt], dict]:
    where = [QuizAttempt.user_id == user_id, QuizAttempt.status == AttemptStatus.COMPLETED]
    if mode is not None:
        where.append(QuizAttempt.mode == mode)
    if subject_id:
        where.append(QuizAttempt.subject_id == subject_id)
    total = db.scalar(select(func.count()).select_from(QuizAttempt).where(*where)) or 0
    rows = db.scalars(
        select(QuizAttempt).where(*where)
        .order_by(QuizAttempt.completed_at.desc())
        .offset((page - 1) * page_size).limit(page_size)
    ).all()
    pagination = {"total": total, "page": page, "page_size": page_size,
                  "total_pages": math.ceil(total / page_size) if page_size else 0}
    return list(rows), pagination


def list_blocks_with_progress(db: Session, user_id: str, subject_id: Optional[str] = None) -> List[dict]:
    stmt = select(QuizBlock).where(QuizBlock.is_active.is_(True))
    if subject_id:
        stmt = stmt.where(QuizBlock.subject_id == subject_id)
    blocks = db.scalars(stmt.order_by(QuizBlock.order_index, QuizBlock.title)).all()
    if not blocks:
        return []
    ids = [b.id for b in blocks]
    counts = dict(db.execute(
        select(QuizQuestion.block_id, func.count(QuizQuestion.id))
        .where(QuizQuestion.block_id.in_(ids), QuizQuestion.is_active.is_(True))
        .group_by(QuizQuestion.block_id)
    ).all())
    mine = {r[0]: (r[1], r[2]) for r in db.execute(
        select(QuizAttempt.block_id, func.count(QuizAttempt.id), func.max(QuizAttempt.score))
        .where(QuizAttempt.user_id == user_id, QuizAttempt.block_id.in_(ids),
               QuizAttempt.status == AttemptStatus.COMPLETED)
        .group_by(QuizAttempt.block_id)
    ).all()}
    return [
        {
            "id": b.id, "title": b.title, "subject_id": b.subject_id, "difficulty": b.difficulty,
            "question_count": counts.get(b.id, 0),
            "total_attempts": b.total_attempts, "average_score": b.average_score,
            "my_attempts": mine.get(b.id, (0, None))[0],
            "best_score": mine.get(b.id, (0, None))[1],
        }
        for b in blocks
    ]
