"""Question selection for new attempts."""
import logging
import random
from typing import Optional

from sqlalchemy.orm import Session

from quiz_engine.core.config import settings
from quiz_engine.core.errors import BlockInactive, EmptyBlock, InsufficientQuestions, InvalidRequest, NotFound
from quiz_engine.models.orm import AttemptMode, QuizAttempt
from quiz_engine.services.attempts import create_attempt
from quiz_engine.services.question_store import (
    get_block, get_subject, list_question_ids_by_block, list_question_ids_by_subject,
)
from quiz_engine.services.stats import bump_times_shown

logger = logging.getLogger(__name__)


def select_random(db: Session, subject_id: str, size: int, rng: random.Random) -> list[int]:
    if get_subject(db, subject_id) is None:
        raise NotFound(f"Subject {subject_id} not found")
    pool = list_question_ids_by_subject(db, subject_id)
    if len(pool) < size:
        raise InsufficientQuestions(subject_id, len(pool), size)
    return rng.sample(pool, size)


def select_block(db: Session, block_id: str) -> tuple[list[int], str]:
    block = get_block(db, block_id)
    if block is None:
        raise NotFound(f"Block {block_id} not found")
    if not block.is_active:
        raise BlockInactive(block_id)
    ids = list_question_ids_by_block(db, block_id)
    if not ids:
        raise EmptyBlock(block_id)
    return ids, block.subject_id


def start_attempt(db: Session, user_id: str, mode: AttemptMode, subject_id: Optional[str] = None,
                  block_id: Optional[str] = None, rng: Optional[random.Random] = None,
                  quiz_size: Optional[int] = None) -> QuizAttempt:
    """Select questions and persist a new OPEN attempt in one transaction.

    The attempt, its empty answer rows and the ``times_shown`` increments are
    committed together, so a reader that sees the attempt sees all of it.
    """
    mode = AttemptMode(mode)
    try:
        if mode is AttemptMode.RANDOM_30:
            if not subject_id:
                raise InvalidRequest("subject_id is required for RANDOM_30 mode")
            question_ids = select_random(db, subject_id, quiz_size or settings.RANDOM_QUIZ_SIZE, rng or random.Random())
            block_id = None
        else:
            if not block_id:
                raise InvalidRequest("block_id is required for BLOCK mode")
            question_ids, subject_id = select_block(db, block_id)
        attempt = create_attempt(db, user_id, mode, question_ids, subject_id=subject_id, block_id=block_id)
        bump_times_shown(db, question_ids)
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info("Started %s attempt %s for %s with %d questions", mode.value, attempt.id, user_id, len(question_ids))
    return attempt
