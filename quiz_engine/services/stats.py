"""
Usage counters and score aggregates.

Every counter write is a single UPDATE whose new value is computed from the
row's current value inside the database, so concurrent attempts grading the
same question, block or subject never lose increments.
"""
import logging
import math
from typing import Dict, Iterable, List, Optional

from sqlalchemy import case, func, select, update
from sqlalchemy.orm import Session

from quiz_engine.models.orm import AttemptStatus, QuizAnswer, QuizAttempt, QuizBlock, QuizQuestion, Subject

logger = logging.getLogger(__name__)

SCORE_TOLERANCE = 1e-6


def _bump(db: Session, column, question_ids: Iterable[int]) -> None:
    ids = list(question_ids)
    if not ids:
        return
    db.execute(
        update(QuizQuestion)
        .where(QuizQuestion.id.in_(ids))
        .values({column: getattr(QuizQuestion, column) + 1})
        .execution_options(synchronize_session=False)
    )


def bump_times_shown(db: Session, question_ids: Iterable[int]) -> None:
    _bump(db, "times_shown", question_ids)


def record_outcomes(db: Session, correct_ids: Iterable[int], wrong_ids: Iterable[int]) -> None:
    """Count graded answers; skipped questions are passed in neither list."""
    _bump(db, "times_correct", correct_ids)
    _bump(db, "times_wrong", wrong_ids)


def fold_score(db: Session, model, row_id: str, score: float) -> None:
    """Fold one completed attempt into a streaming mean.

    ``new = old + (score - old) / (n + 1)``; SET expressions see the row's
    pre-update values, so the mean and the count move together.
    """
    db.execute(
        update(model)
        .where(model.id == row_id)
        .values(
            average_score=model.average_score + (score - model.average_score) / (model.total_attempts + 1),
            total_attempts=model.total_attempts + 1,
        )
        .execution_options(synchronize_session=False)
    )


def record_attempt_score(db: Session, subject_id: Optional[str], block_id: Optional[str], score: float) -> None:
    if block_id is not None:
        fold_score(db, QuizBlock, block_id, score)
    if subject_id is not None:
        fold_score(db, Subject, subject_id, score)


# ---------- per-user reads ----------

def user_stats(db: Session, user_id: str, recent: int = 5) -> dict:
    total = db.scalar(select(func.count()).select_from(QuizAttempt).where(QuizAttempt.user_id == user_id)) or 0
    completed_filter = (QuizAttempt.user_id == user_id, QuizAttempt.status == AttemptStatus.COMPLETED)
    completed, avg = db.execute(
        select(func.count(QuizAttempt.id), func.avg(QuizAttempt.score)).where(*completed_filter)
    ).one()
    rows = db.execute(
        select(QuizAttempt.subject_id, Subject.name, func.count(QuizAttempt.id), func.avg(QuizAttempt.score))
        .join(Subject, Subject.id == QuizAttempt.subject_id)
        .where(*completed_filter)
        .group_by(QuizAttempt.subject_id, Subject.name)
        .order_by(Subject.name)
    ).all()
    recent_rows = db.scalars(
        select(QuizAttempt).where(*completed_filter).order_by(QuizAttempt.completed_at.desc()).limit(recent)
    ).all()
    return {
        "total_attempts": total,
        "completed_attempts": completed or 0,
        "average_score": float(avg or 0.0),
        "per_subject": [
            {"subject_id": r[0], "subject_name": r[1], "attempts": r[2], "average_score": float(r[3] or 0.0)}
            for r in rows
        ],
        "recent_attempts": recent_rows,
    }


# ---------- reconciliation ----------

def expected_question_counters(db: Session) -> Dict[int, dict]:
    completed = QuizAttempt.status == AttemptStatus.COMPLETED
    rows = db.execute(
        select(
            QuizAnswer.question_id,
            func.count(QuizAnswer.id),
            func.sum(case((completed & QuizAnswer.is_correct.is_(True), 1), else_=0)),
            func.sum(case((completed & QuizAnswer.user_answer.is_not(None) & QuizAnswer.is_correct.is_(False), 1), else_=0)),
        )
        .join(QuizAttempt, QuizAttempt.id == QuizAnswer.attempt_id)
        .group_by(QuizAnswer.question_id)
    ).all()
    return {
        r[0]: {"times_shown": r[1], "times_correct": int(r[2] or 0), "times_wrong": int(r[3] or 0)}
        for r in rows
    }


def expected_score_aggregates(db: Session, key_column) -> Dict[str, dict]:
    rows = db.execute(
        select(key_column, func.count(QuizAttempt.id), func.avg(QuizAttempt.score))
        .where(QuizAttempt.status == AttemptStatus.COMPLETED, key_column.is_not(None))
        .group_by(key_column)
    ).all()
    return {r[0]: {"total_attempts": r[1], "average_score": float(r[2] or 0.0)} for r in rows}


def _differs(stored, expected) -> bool:
    if isinstance(expected, float):
        return not math.isclose(stored or 0.0, expected, rel_tol=SCORE_TOLERANCE, abs_tol=SCORE_TOLERANCE)
    return (stored or 0) != expected


def lock_counter_rows(db: Session) -> None:
    """Hold row locks on every counter row until the transaction ends.

    Submits and starts increment these rows, so they wait for the repair to
    commit and then apply their increments on top of the repaired values.
    Rows are locked in a fixed order: questions, blocks, subjects.
    """
    for model in (QuizQuestion, QuizBlock, Subject):
        db.execute(select(model.id).order_by(model.id).with_for_update()).all()


def find_drift(db: Session) -> List[dict]:
    """Compare stored counters with values recomputed from attempt rows."""
    drift = []
    expected_q = expected_question_counters(db)
    zero_q = {"times_shown": 0, "times_correct": 0, "times_wrong": 0}
    for q in db.scalars(select(QuizQuestion).order_by(QuizQuestion.id)):
        for field_name, value in expected_q.get(q.id, zero_q).items():
            if _differs(getattr(q, field_name), value):
                drift.append({"entity": "question", "id": q.id, "field": field_name,
                              "stored": getattr(q, field_name), "expected": value})

    zero_s = {"total_attempts": 0, "average_score": 0.0}
    for entity, model, key_column in (("block", QuizBlock, QuizAttempt.block_id),
                                      ("subject", Subject, QuizAttempt.subject_id)):
        expected = expected_score_aggregates(db, key_column)
        for row in db.scalars(select(model).order_by(model.id)):
            for field_name, value in expected.get(row.id, zero_s).items():
                if _differs(getattr(row, field_name), value):
                    drift.append({"entity": entity, "id": row.id, "field": field_name,
                                  "stored": getattr(row, field_name), "expected": value})
    return drift


def apply_drift(db: Session, drift: List[dict]) -> int:
    models = {"question": QuizQuestion, "block": QuizBlock, "subject": Subject}
    for entry in drift:
        model = models[entry["entity"]]
        db.execute(
            update(model).where(model.id == entry["id"]).values({entry["field"]: entry["expected"]})
            .execution_options(synchronize_session=False)
        )
    logger.info("Rewrote %d drifted counters", len(drift))
    return len(drift)
