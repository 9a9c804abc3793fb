"""Answer store: incremental, idempotent autosave of a student's answers."""

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from exam_core.config import get_settings
from exam_core.database import storage_guard
from exam_core.errors import NotFound, SessionClosed, StorageUnavailable, ValidationError
from exam_core.models import Answer, Exam, Question, Submission, utcnow
from exam_core.services.timing import deadline_for

logger = logging.getLogger(__name__)


def find_answer(session: Session, submission_id: int, question_id: int) -> Optional[Answer]:
    stmt = select(Answer).where(
        (Answer.submission_id == submission_id) & (Answer.question_id == question_id)
    )
    return session.exec(stmt).first()


def list_answers(session: Session, submission_id: int) -> List[Answer]:
    with storage_guard(session, "list_answers"):
        stmt = select(Answer).where(Answer.submission_id == submission_id)
        return list(session.exec(stmt).all())


def _ensure_still_open(session: Session, submission_id: int) -> None:
    """Re-read the submission inside the write transaction.

    SQLite has no row locks. A finalize that committed before this write took
    the database lock is visible here, so the write is abandoned instead of
    landing on a closed session.
    """
    submitted_at = session.exec(
        select(Submission.submitted_at).where(Submission.id == submission_id)
    ).first()
    if submitted_at is not None:
        session.rollback()
        raise SessionClosed(f"Submission {submission_id} was submitted")


def _save_answer_once(
    session: Session,
    submission_id: int,
    question_id: int,
    text: Optional[str],
    now: datetime,
) -> Answer:
    with storage_guard(session, "save_answer"):
        # Row lock serializes this write against finalize's conditional update
        # on backends with row-level locking.
        submission = session.exec(
            select(Submission)
            .where(Submission.id == submission_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).first()
        if not submission:
            raise NotFound(f"Submission with id={submission_id} does not exist")
        if submission.submitted_at is not None:
            raise SessionClosed(f"Submission {submission_id} was submitted")

        exam = session.get(Exam, submission.exam_id)
        if now >= deadline_for(exam, submission):
            raise SessionClosed(f"Time is up for submission {submission_id}")

        question = session.get(Question, question_id)
        if not question or question.exam_id != submission.exam_id:
            raise ValidationError(
                f"Question {question_id} is not part of exam {submission.exam_id}"
            )

        answer = find_answer(session, submission_id, question_id)
        if answer and answer.answer_text == text:
            session.rollback()  # releases the row lock
            return answer

        if answer:
            answer.answer_text = text
            answer.updated_at = now
            session.add(answer)
            session.flush()
        else:
            answer = Answer(
                submission_id=submission_id,
                question_id=question_id,
                answer_text=text,
                updated_at=now,
            )
            session.add(answer)
            try:
                session.flush()
            except IntegrityError:
                # Lost a first-insert race for this question: apply as an update.
                session.rollback()
                answer = find_answer(session, submission_id, question_id)
                answer.answer_text = text
                answer.updated_at = now
                session.add(answer)
                session.flush()

        _ensure_still_open(session, submission_id)
        session.commit()
        session.refresh(answer)
    return answer


def save_answer(
    session: Session,
    submission_id: int,
    question_id: int,
    text: Optional[str],
    *,
    now: Optional[datetime] = None,
) -> Answer:
    """Upsert the student's current answer for one question.

    Last write wins per (submission, question); repeating an identical write
    is a successful no-op. Transient storage failures are retried with the
    same payload.

    Raises:
        NotFound: If the submission doesn't exist
        SessionClosed: If the submission was submitted or its deadline passed
        ValidationError: If the question is not part of the exam
        StorageUnavailable: If storage keeps failing after all retries
    """
    settings = get_settings()
    retrying = Retrying(
        retry=retry_if_exception_type(StorageUnavailable),
        stop=stop_after_attempt(settings.autosave_retry_attempts),
        wait=wait_fixed(settings.retry_wait_seconds),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    return retrying(
        _save_answer_once, session, submission_id, question_id, text, now or utcnow()
    )
