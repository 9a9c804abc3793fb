"""Publication gate: role-dependent read views of a submission.

Students see their score only once the exam's results are published; before
that a finished submission reads as ``pending`` even if it is fully graded.
Teachers and admins always see the full detail.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel
from sqlmodel import Session

from exam_core.config import get_settings
from exam_core.models import Exam, Submission, User
from exam_core.permissions import ensure_owner, ensure_teacher_or_admin_for
from exam_core.services.answer_store import list_answers
from exam_core.services.catalog import get_exam, list_questions
from exam_core.services.session_manager import get_submission
from exam_core.utils import letter_grade, percentage

STATUS_IN_PROGRESS = "in_progress"
STATUS_PENDING = "pending"
STATUS_PUBLISHED = "published"


class StudentAnswerView(BaseModel):
    question_id: int
    question_text: str
    answer_text: Optional[str] = None
    # populated only after publication
    is_correct: Optional[bool] = None
    marks_obtained: Optional[int] = None
    marks: Optional[int] = None
    feedback: Optional[str] = None


class StudentSubmissionView(BaseModel):
    submission_id: int
    exam_id: int
    exam_title: str
    status: str
    started_at: datetime
    submitted_at: Optional[datetime] = None
    total_score: Optional[int] = None
    max_score: Optional[int] = None
    percentage: Optional[float] = None
    grade: Optional[str] = None
    passed: Optional[bool] = None
    answers: List[StudentAnswerView] = []


class GraderAnswerView(BaseModel):
    answer_id: Optional[int] = None
    question_id: int
    question_text: str
    question_type: str
    options: Optional[List[str]] = None
    correct_answer: str
    explanation: Optional[str] = None
    marks: int
    answer_text: Optional[str] = None
    is_correct: Optional[bool] = None
    marks_obtained: Optional[int] = None
    feedback: Optional[str] = None


class GraderSubmissionView(BaseModel):
    submission_id: int
    exam_id: int
    exam_title: str
    student_id: int
    status: str
    started_at: datetime
    submitted_at: Optional[datetime] = None
    auto_submitted: bool
    total_score: Optional[int] = None
    max_score: Optional[int] = None
    is_graded: bool
    graded_at: Optional[datetime] = None
    results_published: bool
    answers: List[GraderAnswerView] = []


def student_status(exam: Exam, submission: Submission) -> str:
    if submission.is_in_progress:
        return STATUS_IN_PROGRESS
    if exam.results_published:
        return STATUS_PUBLISHED
    return STATUS_PENDING


def grader_status(submission: Submission) -> str:
    if submission.is_in_progress:
        return STATUS_IN_PROGRESS
    return "graded" if submission.is_graded else "submitted"


def get_submission_for_student(
    session: Session, submission_id: int, student: User
) -> StudentSubmissionView:
    """The student's own submission, with scores hidden until publication."""
    submission = get_submission(session, submission_id)
    ensure_owner(submission, student.id)
    exam = get_exam(session, submission.exam_id)
    status = student_status(exam, submission)

    view = StudentSubmissionView(
        submission_id=submission.id,
        exam_id=exam.id,
        exam_title=exam.title,
        status=status,
        started_at=submission.started_at,
        submitted_at=submission.submitted_at,
    )

    answers = {a.question_id: a for a in list_answers(session, submission.id)}
    published = status == STATUS_PUBLISHED
    for q in list_questions(session, exam.id):
        a = answers.get(q.id)
        item = StudentAnswerView(
            question_id=q.id,
            question_text=q.question_text,
            answer_text=a.answer_text if a else None,
        )
        if published:
            item.marks = q.marks
            if a:
                item.is_correct = a.is_correct
                item.marks_obtained = a.marks_obtained
                item.feedback = a.feedback
        view.answers.append(item)

    if published:
        total = submission.total_score or 0
        max_score = submission.max_score or 0
        pct = percentage(total, max_score)
        view.total_score = total
        view.max_score = max_score
        view.percentage = pct
        view.grade = letter_grade(pct)
        view.passed = pct >= get_settings().pass_percentage
    return view


def get_submission_for_grader(
    session: Session, submission_id: int, grader: User
) -> GraderSubmissionView:
    """Full submission detail for the exam's teacher or an admin."""
    submission = get_submission(session, submission_id)
    exam = get_exam(session, submission.exam_id)
    ensure_teacher_or_admin_for(exam, grader)

    answers = {a.question_id: a for a in list_answers(session, submission.id)}
    items = []
    for q in list_questions(session, exam.id):
        a = answers.get(q.id)
        items.append(
            GraderAnswerView(
                answer_id=a.id if a else None,
                question_id=q.id,
                question_text=q.question_text,
                question_type=q.question_type,
                options=q.options,
                correct_answer=q.correct_answer,
                explanation=q.explanation,
                marks=q.marks,
                answer_text=a.answer_text if a else None,
                is_correct=a.is_correct if a else None,
                marks_obtained=a.marks_obtained if a else None,
                feedback=a.feedback if a else None,
            )
        )

    return GraderSubmissionView(
        submission_id=submission.id,
        exam_id=exam.id,
        exam_title=exam.title,
        student_id=submission.student_id,
        status=grader_status(submission),
        started_at=submission.started_at,
        submitted_at=submission.submitted_at,
        auto_submitted=submission.auto_submitted,
        total_score=submission.total_score,
        max_score=submission.max_score,
        is_graded=submission.is_graded,
        graded_at=submission.graded_at,
        results_published=exam.results_published,
        answers=items,
    )
