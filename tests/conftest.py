import os
import sys
from datetime import datetime, timedelta
from pathlib import Path

import pytest


def _ensure_app_on_path():
    repo_root = Path(__file__).resolve().parent.parent
    if str(repo_root) not in sys.path:
        sys.path.insert(0, str(repo_root))
    return repo_root


_ensure_app_on_path()

# Settings are cached on first use, so configure before importing the package.
os.environ.setdefault("EXAM_DATABASE_URL", "sqlite://")
os.environ.setdefault("EXAM_RETRY_WAIT_SECONDS", "0")
os.environ.setdefault("EXAM_LOG_LEVEL", "WARNING")

from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from exam_core.database import build_engine
from exam_core.models import Exam, QuestionType, Role, User
from exam_core.services.catalog import add_question

# ============================================================================
# IN-MEMORY DATABASE FOR TESTING
# ============================================================================

test_engine = create_engine(
    "sqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,  # all connections share the same in-memory database
)

# Fixed reference instant for service-level tests (naive UTC)
NOW = datetime(2026, 3, 2, 9, 0, 0)


@pytest.fixture(autouse=True)
def setup_test_db():
    """Fresh tables for every test."""
    SQLModel.metadata.create_all(test_engine)
    yield
    SQLModel.metadata.drop_all(test_engine)


@pytest.fixture
def session():
    """Provide a database session for tests."""
    with Session(test_engine) as session:
        yield session


@pytest.fixture
def file_engine(tmp_path):
    """File-backed SQLite engine for tests that need real concurrent connections."""
    engine = build_engine(f"sqlite:///{tmp_path / 'exam_core_test.db'}")
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


# ============================================================================
# ENTITY FACTORIES
# ============================================================================


def create_user(session: Session, name: str, role: str) -> User:
    user = User(name=name, email=f"{name.lower().replace(' ', '.')}@example.com", role=role)
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


def create_exam(
    session: Session,
    teacher_id: int,
    questions,
    *,
    now: datetime = NOW,
    duration_minutes: int = 30,
    starts_in: timedelta = timedelta(hours=-1),
    ends_in: timedelta = timedelta(hours=2),
    publish: bool = True,
    results_published: bool = False,
) -> Exam:
    """Create an exam, add its questions while unpublished, then publish it."""
    exam = Exam(
        teacher_id=teacher_id,
        title="Midterm",
        subject="General Studies",
        duration_minutes=duration_minutes,
        start_time=now + starts_in,
        end_time=now + ends_in,
        results_published=results_published,
    )
    session.add(exam)
    session.commit()
    session.refresh(exam)

    for spec in questions:
        add_question(session, exam.id, **spec)

    if publish:
        exam.is_published = True
        session.add(exam)
        session.commit()
        session.refresh(exam)
    return exam


OBJECTIVE_QUESTIONS = [
    {"question_text": "Capital of France?", "correct_answer": "Paris", "marks": 1,
     "options": ["Paris", "Rome", "Madrid", "Berlin"]},
    {"question_text": "2 + 2 = ?", "correct_answer": "4", "marks": 2,
     "options": ["3", "4", "5", "22"]},
]

MIXED_QUESTIONS = OBJECTIVE_QUESTIONS + [
    {"question_text": "Explain photosynthesis.", "correct_answer": "Plants convert light to energy",
     "marks": 3, "question_type": QuestionType.FREE_TEXT},
]


@pytest.fixture
def make_user():
    return create_user


@pytest.fixture
def make_exam():
    return create_exam


@pytest.fixture
def teacher(session):
    return create_user(session, "Dr Teacher", Role.TEACHER)


@pytest.fixture
def other_teacher(session):
    return create_user(session, "Other Teacher", Role.TEACHER)


@pytest.fixture
def admin(session):
    return create_user(session, "Admin User", Role.ADMIN)


@pytest.fixture
def student(session):
    return create_user(session, "Alice Student", Role.STUDENT)


@pytest.fixture
def other_student(session):
    return create_user(session, "Bob Student", Role.STUDENT)


@pytest.fixture
def objective_exam(session, teacher):
    """Published exam with two objective questions worth 1 and 2 marks."""
    return create_exam(session, teacher.id, OBJECTIVE_QUESTIONS)


@pytest.fixture
def mixed_exam(session, teacher):
    """Two objective questions (1 and 2 marks) and one free-text question (3 marks)."""
    return create_exam(session, teacher.id, MIXED_QUESTIONS)
