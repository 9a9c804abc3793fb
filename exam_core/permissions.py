"""Authorization checks applied explicitly at each entry point."""

from exam_core.errors import PermissionDenied
from exam_core.models import Exam, Role, Submission, User


def is_teacher_or_admin_for(exam: Exam, user: User) -> bool:
    """Admins may grade any exam; teachers only the exams they own."""
    if user is None or not user.is_active:
        return False
    if user.role == Role.ADMIN:
        return True
    return user.role == Role.TEACHER and exam.teacher_id == user.id


def ensure_teacher_or_admin_for(exam: Exam, user: User) -> None:
    if not is_teacher_or_admin_for(exam, user):
        raise PermissionDenied("Only the exam's teacher or an admin may do this")


def ensure_owner(submission: Submission, student_id: int) -> None:
    if submission.student_id != student_id:
        raise PermissionDenied("Submission belongs to another student")
