from datetime import datetime
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Response
from pydantic import BaseModel, Field, model_validator
from sqlalchemy.orm import Session

from quiz_engine.core.auth import TokenData, require_roles
from quiz_engine.core.config import settings
from quiz_engine.core.database import get_db, get_read_db
from quiz_engine.core.retry import RetryPolicy
from quiz_engine.models.orm import AttemptMode
from quiz_engine.services import attempts as attempt_repo
from quiz_engine.services.question_store import load_questions, question_payload
from quiz_engine.services.scoring import submit_attempt
from quiz_engine.services.selector import start_attempt
from quiz_engine.services.stats import user_stats

router = APIRouter()
quiz_taker = require_roles("student", "admin")


class AttemptCreate(BaseModel):
    mode: AttemptMode
    subject_id: Optional[str] = None
    block_id: Optional[str] = None

    @model_validator(mode="after")
    def check_target(self):
        if self.mode is AttemptMode.RANDOM_30 and not self.subject_id:
            raise ValueError("subject_id is required for RANDOM_30 mode")
        if self.mode is AttemptMode.BLOCK and not self.block_id:
            raise ValueError("block_id is required for BLOCK mode")
        return self


class QuestionOut(BaseModel):
    id: int
    question_text: str
    question_image: Optional[str] = None
    question_type: str
    options: Dict[str, str]


class AttemptStarted(BaseModel):
    attempt_id: str
    mode: AttemptMode
    total_questions: int
    started_at: datetime
    questions: List[QuestionOut]


class AttemptSummary(BaseModel):
    attempt_id: str
    mode: AttemptMode
    subject_id: Optional[str] = None
    block_id: Optional[str] = None
    status: str
    is_completed: bool
    total_questions: int
    score: Optional[float] = None
    correct_answers: Optional[int] = None
    wrong_answers: Optional[int] = None
    skipped_answers: Optional[int] = None
    time_spent: Optional[int] = None
    started_at: datetime
    completed_at: Optional[datetime] = None


class AnswerReview(BaseModel):
    question_id: int
    question_order: int
    user_answer: Optional[str] = None
    is_correct: Optional[bool] = None
    correct_answer: Optional[str] = None
    explanation: Optional[str] = None


class AttemptDetail(AttemptSummary):
    questions: List[QuestionOut]
    answers: List[AnswerReview] = []
    already_completed: bool = False


class AnswerIn(BaseModel):
    question_id: int
    user_answer: Optional[str] = None


class SubmitIn(BaseModel):
    answers: List[AnswerIn] = []
    time_spent: Optional[int] = Field(default=None, ge=0)


class ResultsPage(BaseModel):
    attempts: List[AttemptSummary]
    pagination: dict


class SubjectBreakdown(BaseModel):
    subject_id: str
    subject_name: str
    attempts: int
    average_score: float


class StatsOut(BaseModel):
    total_attempts: int
    completed_attempts: int
    average_score: float
    per_subject: List[SubjectBreakdown]
    recent_attempts: List[AttemptSummary]


class BlockOut(BaseModel):
    id: str
    title: str
    subject_id: str
    difficulty: int
    question_count: int
    total_attempts: int
    average_score: float
    my_attempts: int
    best_score: Optional[float] = None


def read_retry_policy() -> RetryPolicy:
    return RetryPolicy.from_settings()


@router.post("/attempts", response_model=AttemptStarted, status_code=201)
def create_attempt(payload: AttemptCreate, user: TokenData = Depends(quiz_taker), db: Session = Depends(get_db)):
    attempt = start_attempt(db, user.sub, payload.mode, subject_id=payload.subject_id, block_id=payload.block_id)
    questions = load_questions(db, attempt.question_ids)
    return AttemptStarted(
        attempt_id=attempt.id, mode=attempt.mode, total_questions=attempt.total_questions,
        started_at=attempt.started_at,
        questions=[question_payload(questions[qid]) for qid in attempt.question_ids],
    )


@router.get("/attempts/active", response_model=Optional[AttemptSummary])
def active_attempt(user: TokenData = Depends(quiz_taker), db: Session = Depends(get_read_db)):
    attempt = attempt_repo.find_active_attempt(db, user.sub)
    return attempt_repo.attempt_summary(attempt) if attempt else None


@router.get("/attempts/{attempt_id}", response_model=AttemptDetail)
def get_attempt(attempt_id: str, user: TokenData = Depends(quiz_taker), db: Session = Depends(get_read_db),
                retry: RetryPolicy = Depends(read_retry_policy)):
    return attempt_repo.get_attempt(db, attempt_id, user, retry)


@router.post("/attempts/{attempt_id}/submit", response_model=AttemptDetail)
def submit(attempt_id: str, payload: SubmitIn, response: Response,
           user: TokenData = Depends(quiz_taker), db: Session = Depends(get_db)):
    result = submit_attempt(
        db, attempt_id, user, [(a.question_id, a.user_answer) for a in payload.answers], payload.time_spent
    )
    if result.already_completed:
        response.headers["X-Attempt-Already-Completed"] = "true"
    return {**result.attempt, "already_completed": result.already_completed}


@router.get("/results", response_model=ResultsPage)
def my_results(mode: Optional[AttemptMode] = None, subject_id: Optional[str] = None,
               page: int = Query(1, ge=1), page_size: int = Query(settings.RESULTS_PAGE_SIZE, ge=1, le=100),
               user: TokenData = Depends(quiz_taker), db: Session = Depends(get_read_db)):
    rows, pagination = attempt_repo.list_results(db, user.sub, mode, subject_id, page, page_size)
    return ResultsPage(attempts=[attempt_repo.attempt_summary(a) for a in rows], pagination=pagination)


@router.get("/stats", response_model=StatsOut)
def my_stats(user: TokenData = Depends(quiz_taker), db: Session = Depends(get_read_db)):
    stats = user_stats(db, user.sub)
    stats["recent_attempts"] = [attempt_repo.attempt_summary(a) for a in stats["recent_attempts"]]
    return stats


@router.get("/blocks", response_model=List[BlockOut])
def blocks(subject_id: Optional[str] = None, user: TokenData = Depends(quiz_taker),
           db: Session = Depends(get_read_db)):
    return attempt_repo.list_blocks_with_progress(db, user.sub, subject_id)
