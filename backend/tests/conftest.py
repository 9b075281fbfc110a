import json
import os
from datetime import datetime, timedelta

os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("CBT_FINALIZE_BACKOFF_SECONDS", "0")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from farms_cbt.database import create_tables, enable_sqlite_pragmas
from farms_cbt.models.exam import CBTExam
from farms_cbt.models.question import CBTQuestion
from farms_cbt.services.gateway import AttemptGateway
from farms_cbt.services.loader import ExamLoader
from farms_cbt.services.session import ExamSession, Trainee
from farms_cbt.services.store import SqlExamStore

BASE_TIME = datetime(2024, 3, 1, 8, 0, 0)

# Bank order is newest first, so q1 is created last.
QUESTIONS = [
    {"id": "q1", "question_type": "multiple_choice", "options": ["A", "B", "C", "D"], "correct_answer": "B"},
    {"id": "q2", "question_type": "true_false", "options": ["True", "False"], "correct_answer": "True"},
    {"id": "q3", "question_type": "fill_blank", "options": [], "correct_answer": "Nitrogen, N"},
    {"id": "q4", "question_type": "multiple_choice", "options": ["A", "B", "C", "D"], "correct_answer": "C"},
    {"id": "q5", "question_type": "true_false", "options": ["True", "False"], "correct_answer": "False"},
]


class ManualTicker:
    """Ticker driven by the test instead of the event loop."""

    def __init__(self):
        self.running = False
        self.starts = 0
        self._callback = None

    def start(self, callback):
        if self.running:
            return
        self._callback = callback
        self.running = True
        self.starts += 1

    def stop(self):
        self.running = False

    def advance(self, seconds=1):
        for _ in range(seconds):
            if not self.running:
                break
            self._callback()


class FakeClock:
    def __init__(self, now=BASE_TIME):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


def add_question(db, qid, subject="Farm Machinery", question_type="multiple_choice",
                 options=("A", "B"), correct_answer="A", created_at=BASE_TIME, is_active=True):
    q = CBTQuestion(
        id=qid,
        subject=subject,
        topic="General",
        question="Question {}".format(qid),
        question_type=question_type,
        options=json.dumps(list(options)),
        correct_answer=correct_answer,
        difficulty="medium",
        is_active=is_active,
        created_at=created_at,
    )
    db.add(q)
    return q


def add_exam(db, exam_id="exam-1", subjects=("Farm Machinery",), total_questions=3,
             duration=1, passing_score=60, randomization=False, show_results=True,
             is_active=True, created_at=BASE_TIME):
    exam = CBTExam(
        id=exam_id,
        title="Farm Machinery NC II",
        description="Written exam",
        duration=duration,
        total_questions=total_questions,
        passing_score=passing_score,
        subjects=json.dumps(list(subjects)),
        randomization=randomization,
        show_results=show_results,
        is_active=is_active,
        created_at=created_at,
    )
    db.add(exam)
    return exam


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_pragmas(engine)
    create_tables(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def store(session_factory):
    return SqlExamStore(session_factory)


@pytest.fixture
def seed_bank(session_factory):
    """Five Farm Machinery questions (q1..q5 in bank order) and one Soil Science question."""
    with session_factory() as db:
        for i, item in enumerate(QUESTIONS):
            add_question(db, item["id"], question_type=item["question_type"],
                         options=item["options"], correct_answer=item["correct_answer"],
                         created_at=BASE_TIME - timedelta(minutes=i))
        add_question(db, "soil-1", subject="Soil Science", created_at=BASE_TIME)
        db.commit()


@pytest.fixture
def seed_exam(session_factory, seed_bank):
    """An active one-minute exam drawing the first three Farm Machinery questions."""
    with session_factory() as db:
        add_exam(db)
        db.commit()
    return "exam-1"


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_session(store, seed_exam, clock):
    def _make(trainee_id="trainee-1", gateway_store=None, max_attempts=3):
        loaded = ExamLoader(store).load(trainee_id)
        gateway = AttemptGateway(gateway_store or store, max_attempts=max_attempts,
                                 backoff_seconds=0)
        return ExamSession(loaded, Trainee(trainee_id, "Ana Cruz", "ana@example.com"),
                           gateway, ManualTicker(), clock=clock)
    return _make


@pytest.fixture
def started_session(make_session):
    session = make_session()
    session.request_start()
    session.confirm_start()
    return session
