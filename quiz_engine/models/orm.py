import enum
from datetime import datetime

from sqlalchemy import (
    BigInteger, Boolean, DateTime, Enum as SQLEnum, Float, ForeignKey, Index,
    Integer, JSON, String, Text, UniqueConstraint, func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase): pass


class AttemptMode(str, enum.Enum):
    RANDOM_30 = "RANDOM_30"
    BLOCK = "BLOCK"


class AttemptStatus(str, enum.Enum):
    OPEN = "OPEN"
    COMPLETED = "COMPLETED"


class QuestionType(str, enum.Enum):
    SINGLE = "SINGLE"
    MULTIPLE = "MULTIPLE"


# ========== Catalog / Content Models ==========

class Subject(Base):
    __tablename__ = "subjects"
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255))
    slug: Mapped[str | None] = mapped_column(String(255), nullable=True)
    total_attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    average_score: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)


class QuizBlock(Base):
    __tablename__ = "quiz_blocks"
    __table_args__ = (Index("idx_qb_subject", "subject_id"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    subject_id: Mapped[str] = mapped_column(String(64), ForeignKey("subjects.id"))
    title: Mapped[str] = mapped_column(String(255))
    difficulty: Mapped[int] = mapped_column(Integer, default=1)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    order_index: Mapped[int] = mapped_column(Integer, default=0)
    total_attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    average_score: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)


class QuizQuestion(Base):
    __tablename__ = "quiz_questions"
    __table_args__ = (
        Index("idx_qq_subject", "subject_id", "is_active"),
        Index("idx_qq_block", "block_id", "is_active"),
    )

    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True)
    subject_id: Mapped[str] = mapped_column(String(64), ForeignKey("subjects.id"))
    block_id: Mapped[str | None] = mapped_column(String(64), ForeignKey("quiz_blocks.id"), nullable=True)
    question_text: Mapped[str] = mapped_column(Text)
    question_image: Mapped[str | None] = mapped_column(String(500), nullable=True)
    option_a: Mapped[str] = mapped_column(Text)
    option_b: Mapped[str] = mapped_column(Text)
    option_c: Mapped[str] = mapped_column(Text)
    option_d: Mapped[str] = mapped_column(Text)
    option_e: Mapped[str | None] = mapped_column(Text, nullable=True)
    correct_answer: Mapped[str] = mapped_column(String(16))
    question_type: Mapped[QuestionType] = mapped_column(SQLEnum(QuestionType, native_enum=False), default=QuestionType.SINGLE)
    difficulty: Mapped[int] = mapped_column(Integer, default=1)
    explanation: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    times_shown: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    times_correct: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    times_wrong: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now())

    def options(self) -> dict:
        opts = {"A": self.option_a, "B": self.option_b, "C": self.option_c, "D": self.option_d}
        if self.option_e:
            opts["E"] = self.option_e
        return opts


# ========== Delivery Models ==========

class QuizAttempt(Base):
    __tablename__ = "quiz_attempts"
    __table_args__ = (
        Index("idx_qa_user", "user_id", "status"),
        Index("idx_qa_block", "block_id"),
        Index("idx_qa_subject", "subject_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(255))
    mode: Mapped[AttemptMode] = mapped_column(SQLEnum(AttemptMode, native_enum=False))
    subject_id: Mapped[str | None] = mapped_column(String(64), ForeignKey("subjects.id"), nullable=True)
    block_id: Mapped[str | None] = mapped_column(String(64), ForeignKey("quiz_blocks.id"), nullable=True)
    question_ids: Mapped[list] = mapped_column(JSON)
    total_questions: Mapped[int] = mapped_column(Integer)
    status: Mapped[AttemptStatus] = mapped_column(SQLEnum(AttemptStatus, native_enum=False), default=AttemptStatus.OPEN)
    score: Mapped[float | None] = mapped_column(Float, nullable=True)
    correct_answers: Mapped[int | None] = mapped_column(Integer, nullable=True)
    wrong_answers: Mapped[int | None] = mapped_column(Integer, nullable=True)
    skipped_answers: Mapped[int | None] = mapped_column(Integer, nullable=True)
    time_spent: Mapped[int | None] = mapped_column(Integer, nullable=True)
    started_at: Mapped[datetime] = mapped_column(DateTime, default=func.now())
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    answers: Mapped[list["QuizAnswer"]] = relationship(
        back_populates="attempt", order_by="QuizAnswer.question_order"
    )

    @property
    def is_completed(self) -> bool:
        return self.status == AttemptStatus.COMPLETED


class QuizAnswer(Base):
    __tablename__ = "quiz_answers"
    __table_args__ = (
        UniqueConstraint("attempt_id", "question_id", name="uq_quiz_answer"),
        Index("idx_qans_question", "question_id"),
    )

    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True)
    attempt_id: Mapped[str] = mapped_column(String(36), ForeignKey("quiz_attempts.id"))
    question_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("quiz_questions.id"))
    question_order: Mapped[int] = mapped_column(Integer)
    user_answer: Mapped[str | None] = mapped_column(String(16), nullable=True)
    is_correct: Mapped[bool | None] = mapped_column(Boolean, nullable=True)

    attempt: Mapped["QuizAttempt"] = relationship(back_populates="answers")
    question: Mapped["QuizQuestion"] = relationship()
