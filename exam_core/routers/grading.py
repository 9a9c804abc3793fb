"""Submission read views and manual grading.

Students get the publication-gated view of their own submission; teachers
and admins get the full detail and may merge manual grades.
"""

from typing import List

from fastapi import APIRouter, Body, Depends
from pydantic import BaseModel
from sqlmodel import Session

from exam_core.database import get_session
from exam_core.deps import require_login, require_role
from exam_core.models import Role, User
from exam_core.services.grading import ManualGrade, apply_manual_grades
from exam_core.services.results import (
    get_submission_for_grader,
    get_submission_for_student,
)

router = APIRouter()

require_grader = require_role([Role.TEACHER, Role.ADMIN])


class GradesIn(BaseModel):
    updates: List[ManualGrade]


@router.get("/submissions/{submission_id}")
def api_get_submission(
    submission_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_login),
):
    if current_user.role == Role.STUDENT:
        view = get_submission_for_student(session, submission_id, current_user)
    else:
        view = get_submission_for_grader(session, submission_id, current_user)
    return view.model_dump()


@router.post("/submissions/{submission_id}/grades")
def api_apply_grades(
    submission_id: int,
    payload: GradesIn = Body(...),
    session: Session = Depends(get_session),
    current_user: User = Depends(require_grader),
):
    submission = apply_manual_grades(session, submission_id, current_user, payload.updates)
    return {
        "submission_id": submission.id,
        "total_score": submission.total_score,
        "max_score": submission.max_score,
        "is_graded": submission.is_graded,
    }
