import logging
from typing import Dict, Iterable, List

from exam_awards.crud import ExamStore
from exam_awards.grading import AnswerGrader
from exam_awards.schemas import Answer, Attempt, AttemptScore, Question

logger = logging.getLogger(__name__)


def unique_questions(questions: Iterable[Question]) -> List[Question]:
    seen = set()
    result = []
    for q in questions:
        if q.id not in seen:
            seen.add(q.id)
            result.append(q)
    return result


class ScoreAggregator:
    def __init__(self, grader: AnswerGrader, store: ExamStore):
        self.grader = grader
        self.store = store

    def score_attempt(self, attempt: Attempt, questions: Iterable[Question], answers: Iterable[Answer]) -> AttemptScore:
        """
        Grade every answered question, persist each grading, and total the attempt.
        total_score covers every exam question whether answered or not.
        """
        by_question: Dict[str, Answer] = {a.question_id: a for a in answers}
        score = 0
        total = 0
        for question in unique_questions(questions):
            total += question.max_points
            answer = by_question.get(question.id)
            if answer is None:
                continue
            result = self.grader.grade(question, answer)
            self.store.upsert_answer_grading(answer.id, result.is_correct, result.points)
            score += result.points

        logger.info(f"attempt {attempt.id} graded: {score}/{total}")
        return AttemptScore(score=score, total_score=total)

    def recompute_totals(self, questions: Iterable[Question], answers: Iterable[Answer]) -> AttemptScore:
        """Totals from stored answer points; no re-grading, so manual grades survive."""
        by_question: Dict[str, Answer] = {a.question_id: a for a in answers}
        score = 0
        total = 0
        for question in unique_questions(questions):
            total += question.max_points
            answer = by_question.get(question.id)
            if answer is not None:
                # a manual grade never exceeds max_points, but stale rows might
                score += min(answer.awarded_points, question.max_points)
        return AttemptScore(score=score, total_score=total)
