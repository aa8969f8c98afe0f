import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("APP_SECRET", "test-secret")
os.environ.setdefault("ENVIRONMENT", "test")

import pytest
from fastapi.testclient import TestClient

from quiz_engine.core.auth import TokenData, create_token
from quiz_engine.core.database import get_db, get_read_db, init_db, make_engine, make_sessionmaker
from quiz_engine.models.orm import QuestionType, QuizBlock, QuizQuestion, Subject


@pytest.fixture
def engine(tmp_path):
    eng = make_engine(f"sqlite:///{tmp_path / 'quiz.db'}")
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return make_sessionmaker(engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


class Seeder:
    """Creates catalog rows; question ids are assigned by the database."""

    def __init__(self, db):
        self.db = db

    def subject(self, subject_id="cardio", name="Cardiology"):
        s = Subject(id=subject_id, name=name, slug=subject_id)
        self.db.add(s)
        self.db.commit()
        return s

    def block(self, block_id="cardio-1", subject_id="cardio", title="Block 1", is_active=True, order_index=0):
        b = QuizBlock(id=block_id, subject_id=subject_id, title=title, is_active=is_active,
                      order_index=order_index, difficulty=2)
        self.db.add(b)
        self.db.commit()
        return b

    def questions(self, n, subject_id="cardio", block_id=None, correct="A", is_active=True,
                  question_type=QuestionType.SINGLE, option_e=None):
        rows = [
            QuizQuestion(
                subject_id=subject_id, block_id=block_id, question_text=f"Question {i}",
                option_a="Alpha", option_b="Bravo", option_c="Charlie", option_d="Delta", option_e=option_e,
                correct_answer=correct, question_type=question_type, explanation=f"Because {i}",
                is_active=is_active,
            )
            for i in range(n)
        ]
        self.db.add_all(rows)
        self.db.commit()
        return [q.id for q in rows]


@pytest.fixture
def seed(db):
    return Seeder(db)


@pytest.fixture
def student():
    return TokenData(sub="student-1", roles=["student"])


@pytest.fixture
def other_student():
    return TokenData(sub="student-2", roles=["student"])


@pytest.fixture
def admin():
    return TokenData(sub="admin-1", roles=["admin"])


def auth_header(user_id, roles=("student",)):
    return {"Authorization": f"Bearer {create_token(user_id, list(roles))}"}


@pytest.fixture
def client(session_factory):
    from quiz_engine.api.quiz import read_retry_policy
    from quiz_engine.core.retry import RetryPolicy
    from quiz_engine.main import app

    def override():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override
    app.dependency_overrides[get_read_db] = override
    app.dependency_overrides[read_retry_policy] = lambda: RetryPolicy(sleep=lambda s: None)
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


class FakeRedis:
    """Dict-backed stand-in for the handful of redis commands the cache uses."""

    def __init__(self):
        self.store = {}
        self.ttls = {}

    def get(self, key):
        return self.store.get(key)

    def set(self, key, value, ex=None):
        self.store[key] = value
        self.ttls[key] = ex
        return True

    def delete(self, *keys):
        removed = 0
        for key in keys:
            removed += self.store.pop(key, None) is not None
            self.ttls.pop(key, None)
        return removed


@pytest.fixture
def fake_redis():
    return FakeRedis()
