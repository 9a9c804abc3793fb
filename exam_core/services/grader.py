"""Auto-grader for objective questions.

Pure functions: nothing here touches the database. Free-text answers are
left ungraded (``is_correct=None``, zero marks) until a grader merges
manual marks.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence

from exam_core.models import Question, QuestionType
from exam_core.services.catalog import max_score_for


@dataclass
class AnswerGrade:
    question_id: int
    answer_text: Optional[str]
    is_correct: Optional[bool]
    marks_obtained: int


@dataclass
class GradeResult:
    total_score: int
    max_score: int
    grades: List[AnswerGrade] = field(default_factory=list)
    requires_manual_grading: bool = False

    def by_question(self) -> Dict[int, AnswerGrade]:
        return {g.question_id: g for g in self.grades}


def normalize_answer(text: Optional[str]) -> str:
    """Case-fold and trim; a missing answer normalizes to the empty string."""
    if text is None:
        return ""
    return text.strip().casefold()


def grade_question(question: Question, answer_text: Optional[str]) -> AnswerGrade:
    if question.question_type == QuestionType.OBJECTIVE:
        is_correct = normalize_answer(answer_text) == normalize_answer(question.correct_answer)
        return AnswerGrade(
            question_id=question.id,
            answer_text=answer_text,
            is_correct=is_correct,
            marks_obtained=question.marks if is_correct else 0,
        )
    # awaiting manual grading
    return AnswerGrade(
        question_id=question.id,
        answer_text=answer_text,
        is_correct=None,
        marks_obtained=0,
    )


def grade_answers(
    questions: Sequence[Question], answers_by_question: Mapping[int, Optional[str]]
) -> GradeResult:
    """Grade every question of an exam against the student's answer texts.

    Args:
        questions: The exam's full question list
        answers_by_question: question_id -> answer text (missing means unanswered)

    Returns:
        GradeResult with one AnswerGrade per question
    """
    grades = [grade_question(q, answers_by_question.get(q.id)) for q in questions]
    return GradeResult(
        total_score=sum(g.marks_obtained for g in grades),
        max_score=max_score_for(questions),
        grades=grades,
        requires_manual_grading=any(
            q.question_type != QuestionType.OBJECTIVE for q in questions
        ),
    )
