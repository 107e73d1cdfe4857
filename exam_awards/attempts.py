import logging
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from exam_awards.awards import PrizeAwardCoordinator
from exam_awards.config import AwardSettings, utcnow
from exam_awards.crud import SqlExamStore
from exam_awards.errors import (
    AnswerNotFound,
    AttemptAlreadyCompleted,
    AttemptExpired,
    AttemptNotFound,
    ExamNotFound,
    ExamNotPublished,
    InvalidAttemptState,
    InvalidGrade,
    QuestionNotFound,
)
from exam_awards.grading import AnswerGrader
from exam_awards.schemas import (
    Answer,
    Attempt,
    AttemptResult,
    AttemptStatus,
    ManualGradeResult,
    QuestionKind,
    StudentAttempt,
    StudentPrizeCheck,
)
from exam_awards.scoring import ScoreAggregator

logger = logging.getLogger(__name__)


class AttemptService:
    """
    Attempt lifecycle: IN_PROGRESS -> COMPLETED | TIMED_OUT (both terminal).
    Submission and manual grading hand over to the prize coordinator once scores change.
    """

    def __init__(
        self,
        store: SqlExamStore,
        settings: Optional[AwardSettings] = None,
        coordinator: Optional[PrizeAwardCoordinator] = None,
        grader: Optional[AnswerGrader] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.settings = settings or AwardSettings()
        self.clock = clock
        self.grader = grader or AnswerGrader(self.settings)
        self.aggregator = ScoreAggregator(self.grader, store)
        self.coordinator = coordinator or PrizeAwardCoordinator(store, self.settings, clock=clock)

    # ---- helpers ----------------------------------------------------------
    def _own_attempt(self, attempt_id: str, student_id: str) -> Attempt:
        attempt = self.store.get_attempt(attempt_id)
        # a foreign attempt looks the same as a missing one
        if attempt is None or attempt.student_id != student_id:
            raise AttemptNotFound(f"attempt {attempt_id} not found")
        return attempt

    def _time_out(self, attempt: Attempt) -> None:
        self.store.set_attempt_status(attempt.id, AttemptStatus.TIMED_OUT)
        logger.info(f"attempt {attempt.id} timed out (expired at {attempt.expires_at})")

    # ---- lifecycle --------------------------------------------------------
    def start_exam(self, exam_id: str, student_id: str) -> Attempt:
        exam = self.store.get_exam(exam_id)
        if exam is None:
            raise ExamNotFound(f"exam {exam_id} not found")
        if exam.published_at is None:
            raise ExamNotPublished(f"exam {exam_id} is not published")

        attempt = self.store.find_latest_attempt(exam_id, student_id)
        if attempt is not None and attempt.status == AttemptStatus.COMPLETED:
            raise AttemptAlreadyCompleted(f"student {student_id} already completed exam {exam_id}")

        now = self.clock()
        if attempt is None:
            attempt = self.store.create_attempt(
                exam_id,
                student_id,
                started_at=now,
                expires_at=now + timedelta(minutes=exam.duration_minutes),
            )
            logger.info(f"attempt {attempt.id} started: exam {exam_id}, student {student_id}")

        if now > attempt.expires_at:
            self._time_out(attempt)
            raise AttemptExpired(f"attempt {attempt.id} has expired")
        return attempt

    def submit_answer(
        self,
        attempt_id: str,
        student_id: str,
        question_id: str,
        option_id: Optional[str] = None,
        free_text: Optional[str] = None,
    ) -> Answer:
        attempt = self._own_attempt(attempt_id, student_id)
        if attempt.status != AttemptStatus.IN_PROGRESS:
            raise InvalidAttemptState(f"attempt {attempt_id} is {attempt.status.value}; answers are closed")
        if self.clock() > attempt.expires_at:
            self._time_out(attempt)
            raise AttemptExpired(f"attempt {attempt_id} has expired")

        exam_question_ids = {q.id for q in self.store.list_questions_for_exam(attempt.exam_id)}
        if question_id not in exam_question_ids:
            raise QuestionNotFound(f"question {question_id} is not part of exam {attempt.exam_id}")

        return self.store.upsert_answer(attempt_id, question_id, option_id, free_text)

    def submit_exam(self, attempt_id: str, student_id: str) -> Attempt:
        attempt = self._own_attempt(attempt_id, student_id)
        if attempt.status != AttemptStatus.IN_PROGRESS:
            raise InvalidAttemptState(f"attempt {attempt_id} was already submitted")
        # expired attempts never reach COMPLETED
        if self.clock() > attempt.expires_at:
            self._time_out(attempt)
            raise AttemptExpired(f"attempt {attempt_id} has expired")

        questions = self.store.list_questions_for_exam(attempt.exam_id)
        answers = self.store.list_answers_for_attempt(attempt_id)
        totals = self.aggregator.score_attempt(attempt, questions, answers)

        completed = self.store.complete_attempt(attempt_id, totals.score, totals.total_score, self.clock())
        if completed is None:
            # a concurrent submit won the IN_PROGRESS -> COMPLETED transition
            raise InvalidAttemptState(f"attempt {attempt_id} was already submitted")

        self.coordinator.award_exam(attempt.exam_id)
        return completed

    def grade_answer(self, attempt_id: str, answer_id: str, points: int) -> ManualGradeResult:
        """Teacher override of one open-ended answer, followed by a prize re-check."""
        attempt = self.store.get_attempt(attempt_id)
        if attempt is None:
            raise AttemptNotFound(f"attempt {attempt_id} not found")
        if attempt.status != AttemptStatus.COMPLETED:
            raise InvalidAttemptState(f"attempt {attempt_id} has not been submitted")

        answer = self.store.get_answer(answer_id)
        if answer is None or answer.attempt_id != attempt_id:
            raise AnswerNotFound(f"answer {answer_id} not found in attempt {attempt_id}")

        question = self.store.get_question(answer.question_id)
        if question is None:
            raise QuestionNotFound(f"question {answer.question_id} not found")
        if question.kind != QuestionKind.OPEN_ENDED:
            raise InvalidGrade("only open-ended answers can be graded manually")
        if points < 0 or points > question.max_points:
            raise InvalidGrade(f"points must be between 0 and {question.max_points}")

        is_correct = points > 0
        self.store.upsert_answer_grading(answer_id, is_correct, points)

        questions = self.store.list_questions_for_exam(attempt.exam_id)
        answers = self.store.list_answers_for_attempt(attempt_id)
        totals = self.aggregator.recompute_totals(questions, answers)
        self.store.update_attempt_scores(attempt_id, totals.score, totals.total_score)

        logger.info(f"manual grading completed for exam {attempt.exam_id}; recalculating prizes")
        self.coordinator.award_exam(attempt.exam_id)

        return ManualGradeResult(
            answer_id=answer_id,
            points=points,
            is_correct=is_correct,
            score=totals.score,
            total_score=totals.total_score,
        )

    # ---- read views -------------------------------------------------------
    def get_result(self, attempt_id: str, student_id: str) -> AttemptResult:
        attempt = self._own_attempt(attempt_id, student_id)
        if attempt.status != AttemptStatus.COMPLETED:
            raise InvalidAttemptState(f"attempt {attempt_id} has not been submitted")

        exam = self.store.get_exam(attempt.exam_id)
        return AttemptResult(
            attempt=attempt,
            exam_title=exam.title if exam else "",
            questions=self.store.list_questions_for_exam(attempt.exam_id),
            answers=self.store.list_answers_for_attempt(attempt_id),
        )

    def list_attempts(self, student_id: str) -> List[StudentAttempt]:
        return self.store.list_attempts_for_student(student_id)

    def expire_stale_attempts(self) -> int:
        count = self.store.expire_attempts(self.clock())
        if count:
            logger.info(f"{count} attempt(s) moved to TIMED_OUT")
        return count

    def check_prizes_for_student(self, student_id: str) -> StudentPrizeCheck:
        return self.coordinator.check_and_award_for_student(student_id)
