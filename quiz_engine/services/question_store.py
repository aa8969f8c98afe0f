"""Read-only access to the authored question pool."""
from typing import Dict, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from quiz_engine.models.orm import QuizBlock, QuizQuestion, Subject


def get_subject(db: Session, subject_id: str) -> Optional[Subject]:
    return db.get(Subject, subject_id)


def get_block(db: Session, block_id: str) -> Optional[QuizBlock]:
    return db.get(QuizBlock, block_id)


def list_question_ids_by_subject(db: Session, subject_id: str) -> List[int]:
    stmt = select(QuizQuestion.id).where(
        QuizQuestion.subject_id == subject_id, QuizQuestion.is_active.is_(True)
    ).order_by(QuizQuestion.id)
    return list(db.scalars(stmt))


def list_question_ids_by_block(db: Session, block_id: str) -> List[int]:
    stmt = select(QuizQuestion.id).where(
        QuizQuestion.block_id == block_id, QuizQuestion.is_active.is_(True)
    ).order_by(QuizQuestion.id)
    return list(db.scalars(stmt))


def load_questions(db: Session, question_ids: Iterable[int]) -> Dict[int, QuizQuestion]:
    ids = list(question_ids)
    if not ids:
        return {}
    rows = db.scalars(select(QuizQuestion).where(QuizQuestion.id.in_(ids)))
    return {q.id: q for q in rows}


def question_payload(q: QuizQuestion) -> dict:
    """Student-facing view of a question; never includes the answer key."""
    return {
        "id": q.id,
        "question_text": q.question_text,
        "question_image": q.question_image,
        "question_type": q.question_type.value,
        "options": q.options(),
    }
