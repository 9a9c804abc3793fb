"""Session manager: one timed session per (exam, student), plus finalize.

The Submission row is the only shared state. Creation is serialized by the
(exam_id, student_id) unique constraint and finalize by a conditional update
on ``submitted_at IS NULL``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from exam_core.database import storage_guard
from exam_core.errors import AlreadySubmitted, NotAvailable, NotFound, StorageUnavailable
from exam_core.models import Answer, Exam, Submission, utcnow
from exam_core.permissions import ensure_owner
from exam_core.services.answer_store import list_answers
from exam_core.services.catalog import get_exam, is_exam_open, list_questions, max_score_for
from exam_core.services.grader import grade_answers
from exam_core.services.timing import deadline_for, remaining_seconds

if TYPE_CHECKING:
    from exam_core.scheduler import DeadlineScheduler

logger = logging.getLogger(__name__)


@dataclass
class SessionState:
    submission_id: int
    exam_id: int
    student_id: int
    started_at: datetime
    deadline: datetime
    remaining_seconds: int
    resumed: bool = False


def _state(exam: Exam, submission: Submission, now: datetime, resumed: bool) -> SessionState:
    return SessionState(
        submission_id=submission.id,
        exam_id=exam.id,
        student_id=submission.student_id,
        started_at=submission.started_at,
        deadline=deadline_for(exam, submission),
        remaining_seconds=remaining_seconds(exam, submission, now),
        resumed=resumed,
    )


def find_submission(session: Session, exam_id: int, student_id: int) -> Optional[Submission]:
    stmt = select(Submission).where(
        (Submission.exam_id == exam_id) & (Submission.student_id == student_id)
    )
    return session.exec(stmt).first()


def get_submission(session: Session, submission_id: int) -> Submission:
    with storage_guard(session, "get_submission"):
        submission = session.get(Submission, submission_id, populate_existing=True)
    if not submission:
        raise NotFound(f"Submission with id={submission_id} does not exist")
    return submission


def _create_submission(
    session: Session, exam: Exam, student_id: int, now: datetime
) -> tuple[Submission, bool]:
    """Insert the submission, or return the row a concurrent caller created."""
    submission = Submission(
        exam_id=exam.id,
        student_id=student_id,
        started_at=now,
        max_score=max_score_for(list_questions(session, exam.id)),
    )
    session.add(submission)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        existing = find_submission(session, exam.id, student_id)
        logger.info(
            "Concurrent start for exam %s student %s resolved to submission %s",
            exam.id, student_id, existing.id,
        )
        return existing, True
    session.refresh(submission)
    return submission, False


def start_or_resume(
    session: Session,
    exam_id: int,
    student_id: int,
    *,
    scheduler: Optional[DeadlineScheduler] = None,
    now: Optional[datetime] = None,
) -> SessionState:
    """Start the student's session for an exam, or resume the existing one.

    Resuming re-derives the remaining time from the persisted ``started_at``
    and re-arms the deadline timer; a session already past its deadline is
    finalized on the spot.

    Raises:
        NotFound: If the exam doesn't exist
        NotAvailable: If the exam is unpublished, not started, or over
        AlreadySubmitted: If the student's submission is already final
    """
    now = now or utcnow()
    exam = get_exam(session, exam_id)

    with storage_guard(session, "start_or_resume"):
        submission = find_submission(session, exam_id, student_id)

    if not is_exam_open(exam, now):
        ended = exam.is_published and now > exam.end_time
        if not ended:
            raise NotAvailable(f"Exam {exam_id} is not available yet")
        if submission is not None and submission.is_in_progress:
            _finalize_expired(session, submission, scheduler, now)
        raise NotAvailable(f"Exam {exam_id} has ended")

    if submission is not None and not submission.is_in_progress:
        raise AlreadySubmitted(f"Exam {exam_id} was already submitted")

    resumed = submission is not None
    if submission is None:
        with storage_guard(session, "create_submission"):
            submission, resumed = _create_submission(session, exam, student_id, now)
        if not submission.is_in_progress:
            raise AlreadySubmitted(f"Exam {exam_id} was already submitted")

    deadline = deadline_for(exam, submission)
    if now >= deadline:
        _finalize_expired(session, submission, scheduler, now)
        raise AlreadySubmitted(f"Time is up for exam {exam_id}")

    if scheduler is not None:
        scheduler.arm(submission.id, deadline)

    logger.info(
        "%s session %s for exam %s student %s",
        "Resumed" if resumed else "Started", submission.id, exam_id, student_id,
    )
    return _state(exam, submission, now, resumed)


def _finalize_expired(
    session: Session,
    submission: Submission,
    scheduler: Optional[DeadlineScheduler],
    now: datetime,
) -> None:
    """Reconcile a session whose timer fire was missed."""
    if scheduler is not None:
        scheduler.cancel(submission.id)
    try:
        finalize_submission(session, submission.id, auto_submitted=True, now=now)
    except AlreadySubmitted:
        logger.info("Expired session %s was finalized concurrently", submission.id)


def get_session_state(
    session: Session,
    submission_id: int,
    student_id: int,
    *,
    now: Optional[datetime] = None,
) -> SessionState:
    """Countdown state for client re-sync; the server deadline stays authoritative."""
    now = now or utcnow()
    submission = get_submission(session, submission_id)
    ensure_owner(submission, student_id)
    if not submission.is_in_progress:
        raise AlreadySubmitted(f"Submission {submission_id} was already submitted")
    exam = get_exam(session, submission.exam_id)
    return _state(exam, submission, now, resumed=True)


def submit_session(
    session: Session,
    submission_id: int,
    student_id: int,
    *,
    scheduler: Optional[DeadlineScheduler] = None,
    now: Optional[datetime] = None,
) -> Submission:
    """Explicit submit by the student: finalize, then cancel the timer.

    A submit that arrives after a missed deadline is recorded as an
    auto-submit. If finalize fails the deadline timer stays armed.
    """
    now = now or utcnow()
    submission = get_submission(session, submission_id)
    ensure_owner(submission, student_id)
    exam = get_exam(session, submission.exam_id)
    late = now >= deadline_for(exam, submission)

    submission = finalize_submission(session, submission_id, auto_submitted=late, now=now)
    if scheduler is not None:
        scheduler.cancel(submission_id)
    if late:
        logger.info("Submit for session %s arrived after its deadline", submission_id)
    return submission


def finalize_submission(
    session: Session,
    submission_id: int,
    *,
    auto_submitted: bool,
    now: Optional[datetime] = None,
) -> Submission:
    """Close the session, auto-grade it and persist the scores in one transaction.

    The conditional update on ``submitted_at IS NULL`` runs first so that
    exactly one of several concurrent finalizers wins. If the grades cannot
    be stored the whole transaction rolls back and the error propagates.

    Raises:
        NotFound: If the submission doesn't exist
        AlreadySubmitted: If another finalize already closed the session
        StorageUnavailable: If the backend fails; nothing is committed
    """
    now = now or utcnow()
    with storage_guard(session, "finalize"):
        result = session.execute(
            update(Submission)
            .where(Submission.id == submission_id)
            .where(Submission.submitted_at.is_(None))
            .values(submitted_at=now, auto_submitted=auto_submitted)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            session.rollback()
            get_submission(session, submission_id)
            raise AlreadySubmitted(f"Submission {submission_id} was already submitted")

        submission = session.get(Submission, submission_id, populate_existing=True)
        questions = list_questions(session, submission.exam_id)
        answers = {a.question_id: a for a in list_answers(session, submission_id)}
        graded = grade_answers(
            questions, {qid: a.answer_text for qid, a in answers.items()}
        )

        try:
            for grade in graded.grades:
                answer = answers.get(grade.question_id)
                if answer is None:
                    answer = Answer(submission_id=submission_id, question_id=grade.question_id)
                answer.answer_text = grade.answer_text
                answer.is_correct = grade.is_correct
                answer.marks_obtained = grade.marks_obtained
                answer.updated_at = now
                session.add(answer)

            submission.total_score = graded.total_score
            submission.max_score = graded.max_score
            submission.is_graded = not graded.requires_manual_grading
            if submission.is_graded:
                submission.graded_at = now
            session.add(submission)
            session.commit()
        except IntegrityError as exc:
            # an autosave landed an answer row after the answers were read
            session.rollback()
            logger.warning("Finalize of submission %s hit a concurrent answer write", submission_id)
            raise StorageUnavailable(
                f"Submission {submission_id} changed during finalize"
            ) from exc
        session.refresh(submission)

    logger.info(
        "Finalized submission %s (%s): %s/%s graded=%s",
        submission_id,
        "auto" if auto_submitted else "manual",
        submission.total_score,
        submission.max_score,
        submission.is_graded,
    )
    return submission
