"""Grading merge: manual overrides on top of the auto-grader's results."""

import logging
from datetime import datetime
from typing import List, Optional, Sequence

from pydantic import BaseModel
from sqlmodel import Session

from exam_core.database import storage_guard
from exam_core.errors import ValidationError
from exam_core.models import Answer, Submission, User, utcnow
from exam_core.permissions import ensure_teacher_or_admin_for
from exam_core.services.answer_store import list_answers
from exam_core.services.catalog import get_exam, list_questions
from exam_core.services.session_manager import get_submission
from exam_core.utils import clamp_marks, sanitize_feedback

logger = logging.getLogger(__name__)


class ManualGrade(BaseModel):
    """One grader override for the answer to ``question_id``."""

    question_id: int
    is_correct: Optional[bool] = None
    marks_obtained: Optional[float] = None
    feedback: Optional[str] = None


def apply_manual_grades(
    session: Session,
    submission_id: int,
    grader: User,
    updates: Sequence[ManualGrade],
    *,
    now: Optional[datetime] = None,
) -> Submission:
    """Merge grader overrides and recompute the submission's score.

    Marks are clamped to ``[0, question.marks]``. Every update is validated
    before anything is written, so a bad update leaves the submission as it
    was. Reapplying the same updates yields the same state.

    Raises:
        NotFound: If the submission doesn't exist
        PermissionDenied: If the grader may not grade this exam
        ValidationError: If the submission is still in progress, a question
            is not part of the exam, or marks are not numeric
    """
    now = now or utcnow()
    submission = get_submission(session, submission_id)
    exam = get_exam(session, submission.exam_id)
    ensure_teacher_or_admin_for(exam, grader)

    if submission.is_in_progress:
        raise ValidationError(f"Submission {submission_id} has not been submitted yet")

    questions = {q.id: q for q in list_questions(session, exam.id)}
    answers = {a.question_id: a for a in list_answers(session, submission_id)}

    # validate first
    planned: List[tuple] = []
    for update in updates:
        question = questions.get(update.question_id)
        if question is None:
            raise ValidationError(
                f"Question {update.question_id} is not part of exam {exam.id}"
            )
        marks = None
        if update.marks_obtained is not None:
            try:
                marks = clamp_marks(update.marks_obtained, question.marks)
            except ValueError as e:
                raise ValidationError(f"Question {question.id}: {e}")
        planned.append((question, update, marks))

    with storage_guard(session, "apply_manual_grades"):
        for question, update, marks in planned:
            answer = answers.get(question.id)
            if answer is None:
                answer = Answer(submission_id=submission_id, question_id=question.id)
                answers[question.id] = answer
            if update.is_correct is not None:
                answer.is_correct = update.is_correct
            if marks is not None:
                answer.marks_obtained = marks
            if update.feedback is not None:
                answer.feedback = sanitize_feedback(update.feedback) or None
            answer.updated_at = now
            session.add(answer)

        submission.total_score = sum((a.marks_obtained or 0) for a in answers.values())
        submission.is_graded = True
        submission.graded_at = now
        session.add(submission)
        session.commit()
        session.refresh(submission)

    logger.info(
        "Grader %s merged %d grades into submission %s: total %s/%s",
        grader.id, len(planned), submission_id,
        submission.total_score, submission.max_score,
    )
    return submission
