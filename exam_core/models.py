"""SQLModel models for the timed exam session core."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import JSON, Column, UniqueConstraint
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    """Current time as naive UTC, the convention for every stored timestamp."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Role:
    ADMIN = "admin"
    TEACHER = "teacher"
    STUDENT = "student"


class QuestionType:
    OBJECTIVE = "objective"
    FREE_TEXT = "free_text"

    ALL = (OBJECTIVE, FREE_TEXT)


class User(SQLModel, table=True):
    """Application user owning one role (admin / teacher / student).

    Authentication and role assignment happen elsewhere; the core only
    reads the id and role.
    """

    __table_args__ = (UniqueConstraint("email", name="uq_user_email"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    email: str
    role: str = Field(default=Role.STUDENT)
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=utcnow)


class Exam(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    teacher_id: int = Field(foreign_key="user.id", index=True)
    title: str
    subject: str
    instructions: Optional[str] = None
    duration_minutes: int = Field(default=60)
    start_time: datetime
    end_time: datetime
    is_published: bool = Field(default=False)
    results_published: bool = Field(default=False)
    created_at: datetime = Field(default_factory=utcnow)


class Question(SQLModel, table=True):
    """A question in an exam's ordered catalog."""

    __table_args__ = (
        UniqueConstraint("exam_id", "order_index", name="uq_question_order"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    exam_id: int = Field(foreign_key="exam.id", index=True)
    question_text: str
    question_type: str = Field(default=QuestionType.OBJECTIVE)
    options: Optional[List[str]] = Field(default=None, sa_column=Column(JSON))
    correct_answer: str
    marks: int = Field(default=1)
    order_index: int = Field(default=0)
    explanation: Optional[str] = None


class Submission(SQLModel, table=True):
    """One student's sitting of one exam.

    InProgress while ``submitted_at`` is null, Submitted once it is set,
    Graded when ``is_graded`` is true.
    """

    __table_args__ = (
        UniqueConstraint("exam_id", "student_id", name="uq_submission_exam_student"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    exam_id: int = Field(foreign_key="exam.id", index=True)
    student_id: int = Field(foreign_key="user.id", index=True)
    started_at: datetime = Field(default_factory=utcnow)
    submitted_at: Optional[datetime] = None
    total_score: Optional[int] = None
    max_score: Optional[int] = None
    is_graded: bool = Field(default=False)
    auto_submitted: bool = Field(default=False)  # finalized by the deadline timer
    graded_at: Optional[datetime] = None

    @property
    def is_in_progress(self) -> bool:
        return self.submitted_at is None


class Answer(SQLModel, table=True):
    __table_args__ = (
        UniqueConstraint("submission_id", "question_id", name="uq_answer_submission_question"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    submission_id: int = Field(foreign_key="submission.id", index=True)
    question_id: int = Field(foreign_key="question.id")
    answer_text: Optional[str] = None
    is_correct: Optional[bool] = None
    marks_obtained: Optional[int] = None
    feedback: Optional[str] = None
    updated_at: datetime = Field(default_factory=utcnow)
