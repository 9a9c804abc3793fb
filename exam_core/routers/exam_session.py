"""API endpoints students use while sitting a timed exam.

The countdown shown by the client is a projection of ``remaining_seconds``;
the server-side deadline timer decides when the session closes.
"""

from typing import Optional

from fastapi import APIRouter, Body, Depends
from pydantic import BaseModel
from sqlmodel import Session

from exam_core.database import get_session
from exam_core.deps import get_scheduler, require_role
from exam_core.models import Role, User
from exam_core.permissions import ensure_owner
from exam_core.scheduler import DeadlineScheduler
from exam_core.services.answer_store import list_answers, save_answer
from exam_core.services.catalog import list_questions
from exam_core.services.session_manager import (
    SessionState,
    get_submission,
    get_session_state,
    start_or_resume,
    submit_session,
)

router = APIRouter()

require_student = require_role([Role.STUDENT])


class AnswerIn(BaseModel):
    answer_text: Optional[str] = None


def _state_out(state: SessionState) -> dict:
    return {
        "submission_id": state.submission_id,
        "exam_id": state.exam_id,
        "started_at": state.started_at,
        "deadline": state.deadline,
        "remaining_seconds": state.remaining_seconds,
        "resumed": state.resumed,
    }


@router.post("/exams/{exam_id}/session")
def api_start_session(
    exam_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_student),
    scheduler: DeadlineScheduler = Depends(get_scheduler),
):
    state = start_or_resume(session, exam_id, current_user.id, scheduler=scheduler)
    saved = {a.question_id: a.answer_text for a in list_answers(session, state.submission_id)}
    out = _state_out(state)
    # correct answers never leave the server during a session
    out["questions"] = [
        {
            "question_id": q.id,
            "question_text": q.question_text,
            "question_type": q.question_type,
            "options": q.options,
            "marks": q.marks,
            "order_index": q.order_index,
        }
        for q in list_questions(session, exam_id)
    ]
    out["answers"] = saved
    return out


@router.get("/sessions/{submission_id}")
def api_session_state(
    submission_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_student),
):
    return _state_out(get_session_state(session, submission_id, current_user.id))


@router.put("/sessions/{submission_id}/answers/{question_id}")
def api_save_answer(
    submission_id: int,
    question_id: int,
    payload: AnswerIn = Body(...),
    session: Session = Depends(get_session),
    current_user: User = Depends(require_student),
):
    ensure_owner(get_submission(session, submission_id), current_user.id)
    answer = save_answer(session, submission_id, question_id, payload.answer_text)
    return {
        "status": "saved",
        "submission_id": submission_id,
        "question_id": answer.question_id,
        "answer_text": answer.answer_text,
    }


@router.post("/sessions/{submission_id}/submit")
def api_submit_session(
    submission_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_student),
    scheduler: DeadlineScheduler = Depends(get_scheduler),
):
    submission = submit_session(
        session, submission_id, current_user.id, scheduler=scheduler
    )
    return {
        "submission_id": submission.id,
        "status": "submitted",
        "submitted_at": submission.submitted_at,
    }
