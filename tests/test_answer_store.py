"""Tests for incremental answer autosave."""

from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError
from sqlmodel import select

from conftest import NOW, OBJECTIVE_QUESTIONS
from exam_core.errors import NotFound, SessionClosed, StorageUnavailable, ValidationError
from exam_core.models import Answer
from exam_core.services import answer_store
from exam_core.services.answer_store import list_answers, save_answer
from exam_core.services.catalog import list_questions
from exam_core.services.session_manager import start_or_resume, submit_session


@pytest.fixture
def open_session(session, objective_exam, student):
    state = start_or_resume(session, objective_exam.id, student.id, now=NOW)
    questions = list_questions(session, objective_exam.id)
    return state, questions


def test_save_answer_creates_row(session, open_session):
    state, questions = open_session
    answer = save_answer(session, state.submission_id, questions[0].id, "Paris", now=NOW)

    assert answer.id is not None
    assert answer.answer_text == "Paris"
    assert answer.is_correct is None


def test_last_write_wins_for_same_question(session, open_session):
    state, questions = open_session
    q_id = questions[0].id
    save_answer(session, state.submission_id, q_id, "Rome", now=NOW)
    save_answer(session, state.submission_id, q_id, "Madrid", now=NOW + timedelta(seconds=5))
    save_answer(session, state.submission_id, q_id, "Paris", now=NOW + timedelta(seconds=9))

    answers = list_answers(session, state.submission_id)
    assert len(answers) == 1
    assert answers[0].answer_text == "Paris"


def test_repeated_identical_save_is_a_noop(session, open_session):
    state, questions = open_session
    first = save_answer(session, state.submission_id, questions[1].id, "4", now=NOW)
    second = save_answer(
        session, state.submission_id, questions[1].id, "4", now=NOW + timedelta(seconds=3)
    )

    assert second.id == first.id
    assert second.answer_text == "4"
    assert second.updated_at == NOW
    rows = session.exec(select(Answer)).all()
    assert len(rows) == 1


def test_answers_to_different_questions_are_independent(session, open_session):
    state, questions = open_session
    save_answer(session, state.submission_id, questions[0].id, "Paris", now=NOW)
    save_answer(session, state.submission_id, questions[1].id, "5", now=NOW)

    stored = {a.question_id: a.answer_text for a in list_answers(session, state.submission_id)}
    assert stored == {questions[0].id: "Paris", questions[1].id: "5"}


def test_save_after_submit_is_rejected(session, open_session, student):
    state, questions = open_session
    submit_session(session, state.submission_id, student.id, now=NOW + timedelta(minutes=1))

    with pytest.raises(SessionClosed):
        save_answer(
            session, state.submission_id, questions[0].id, "Paris",
            now=NOW + timedelta(minutes=2),
        )


def test_save_after_deadline_is_rejected(session, open_session):
    state, questions = open_session
    with pytest.raises(SessionClosed):
        save_answer(
            session, state.submission_id, questions[0].id, "Paris",
            now=NOW + timedelta(minutes=30),
        )


def test_question_from_another_exam_is_rejected(session, open_session, make_exam, teacher):
    state, _ = open_session
    other = make_exam(session, teacher.id, OBJECTIVE_QUESTIONS)
    foreign_question = list_questions(session, other.id)[0]

    with pytest.raises(ValidationError):
        save_answer(session, state.submission_id, foreign_question.id, "Paris", now=NOW)


def test_unknown_submission_raises_not_found(session, objective_exam):
    question = list_questions(session, objective_exam.id)[0]
    with pytest.raises(NotFound):
        save_answer(session, 424242, question.id, "Paris", now=NOW)


def test_transient_storage_failure_is_retried(session, open_session, monkeypatch):
    state, questions = open_session
    real_save = answer_store._save_answer_once
    calls = []

    def flaky(*args, **kwargs):
        calls.append(1)
        if len(calls) == 1:
            raise StorageUnavailable("backend hiccup")
        return real_save(*args, **kwargs)

    monkeypatch.setattr(answer_store, "_save_answer_once", flaky)
    answer = save_answer(session, state.submission_id, questions[0].id, "Paris", now=NOW)

    assert len(calls) == 2
    assert answer.answer_text == "Paris"


def test_persistent_storage_failure_surfaces(session, open_session, monkeypatch):
    state, questions = open_session

    def broken_flush(*args, **kwargs):
        raise OperationalError("INSERT", {}, Exception("database is locked"))

    monkeypatch.setattr(session, "flush", broken_flush)
    with pytest.raises(StorageUnavailable):
        save_answer(session, state.submission_id, questions[0].id, "Paris", now=NOW)
