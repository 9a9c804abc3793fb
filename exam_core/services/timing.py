"""Deadline arithmetic shared by the session manager, answer store and scheduler."""

from datetime import datetime, timedelta

from exam_core.models import Exam, Submission


def deadline_for(exam: Exam, submission: Submission) -> datetime:
    """The earlier of the personal time limit and the exam's global end time."""
    personal = submission.started_at + timedelta(minutes=exam.duration_minutes)
    return min(personal, exam.end_time)


def remaining_seconds(exam: Exam, submission: Submission, now: datetime) -> int:
    elapsed = (now - submission.started_at).total_seconds()
    remaining = exam.duration_minutes * 60 - elapsed
    remaining = min(remaining, (exam.end_time - now).total_seconds())
    return max(0, int(remaining))
