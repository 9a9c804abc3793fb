"""Question catalog: read access to an exam and its ordered questions."""

from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from exam_core.database import storage_guard
from exam_core.errors import NotFound, ValidationError
from exam_core.models import Exam, Question, QuestionType


def get_exam(session: Session, exam_id: int) -> Exam:
    with storage_guard(session, "get_exam"):
        exam = session.get(Exam, exam_id)
    if not exam:
        raise NotFound(f"Exam with id={exam_id} does not exist")
    return exam


def list_questions(session: Session, exam_id: int) -> List[Question]:
    with storage_guard(session, "list_questions"):
        stmt = (
            select(Question)
            .where(Question.exam_id == exam_id)
            .order_by(Question.order_index, Question.id)
        )
        return list(session.exec(stmt).all())


def max_score_for(questions: Sequence[Question]) -> int:
    """Achievable maximum: every question's marks, answered or not."""
    return sum(q.marks for q in questions)


def is_exam_open(exam: Exam, now: datetime) -> bool:
    return exam.is_published and exam.start_time <= now <= exam.end_time


def add_question(
    session: Session,
    exam_id: int,
    question_text: str,
    correct_answer: str,
    marks: int = 1,
    question_type: str = QuestionType.OBJECTIVE,
    options: Optional[List[str]] = None,
    order_index: Optional[int] = None,
    explanation: Optional[str] = None,
) -> Question:
    """Append a question to an unpublished exam.

    Raises:
        NotFound: If the exam doesn't exist
        ValidationError: If the exam is published or the question is invalid
    """
    exam = get_exam(session, exam_id)
    if exam.is_published:
        raise ValidationError("Questions cannot change once the exam is published")
    if question_type not in QuestionType.ALL:
        raise ValidationError(f"Unknown question type '{question_type}'")
    if marks < 1:
        raise ValidationError("marks must be at least 1")
    if not question_text.strip():
        raise ValidationError("Question text cannot be empty")

    if order_index is None:
        existing = list_questions(session, exam_id)
        order_index = max((q.order_index for q in existing), default=-1) + 1

    q = Question(
        exam_id=exam_id,
        question_text=question_text.strip(),
        question_type=question_type,
        options=options,
        correct_answer=correct_answer,
        marks=marks,
        order_index=order_index,
        explanation=explanation,
    )
    with storage_guard(session, "add_question"):
        session.add(q)
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            raise ValidationError(f"order_index {order_index} already used in exam {exam_id}")
        session.refresh(q)
    return q
