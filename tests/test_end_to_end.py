"""End-to-end: timed session, deadline auto-submit, manual grading, publication."""

from datetime import timedelta

from sqlmodel import Session

from conftest import NOW, test_engine
from exam_core.models import Submission
from exam_core.scheduler import DeadlineScheduler
from exam_core.services.answer_store import save_answer
from exam_core.services.catalog import list_questions
from exam_core.services.grading import ManualGrade, apply_manual_grades
from exam_core.services.results import get_submission_for_student
from exam_core.services.session_manager import start_or_resume


def test_mixed_exam_lifecycle(session, mixed_exam, student, teacher):
    clock_now = [NOW]
    scheduler = DeadlineScheduler(
        lambda: Session(test_engine), clock=lambda: clock_now[0], retry_wait_seconds=0
    )
    try:
        state = start_or_resume(
            session, mixed_exam.id, student.id, scheduler=scheduler, now=NOW
        )
        q1, q2, q3 = list_questions(session, mixed_exam.id)
        save_answer(session, state.submission_id, q1.id, "Paris", now=NOW + timedelta(minutes=1))
        save_answer(session, state.submission_id, q2.id, "22", now=NOW + timedelta(minutes=2))
        save_answer(
            session, state.submission_id, q3.id, "Chlorophyll absorbs light.",
            now=NOW + timedelta(minutes=3),
        )

        # deadline reached
        clock_now[0] = state.deadline
        scheduler.fire(state.submission_id)
    finally:
        scheduler.shutdown()

    submission = session.get(Submission, state.submission_id, populate_existing=True)
    assert submission.auto_submitted is True
    assert submission.max_score == 6
    assert submission.total_score == 1
    assert submission.is_graded is False

    merged = apply_manual_grades(
        session, state.submission_id, teacher,
        [ManualGrade(question_id=q3.id, marks_obtained=2)],
    )
    assert merged.total_score == 3
    assert merged.is_graded is True

    pending = get_submission_for_student(session, state.submission_id, student)
    assert pending.status == "pending"
    assert pending.total_score is None

    mixed_exam.results_published = True
    session.add(mixed_exam)
    session.commit()

    published = get_submission_for_student(session, state.submission_id, student)
    assert published.status == "published"
    assert (published.total_score, published.max_score) == (3, 6)
    assert published.grade == "F"
    assert published.passed is False
