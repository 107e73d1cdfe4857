import logging
from datetime import datetime
from typing import Callable, Optional

from exam_awards.config import AwardSettings, utcnow
from exam_awards.crud import ExamStore
from exam_awards.schemas import AwardOutcome, GateDecision, QuestionKind

logger = logging.getLogger(__name__)


class AwardGate:
    """
    An exam is award-eligible when it is published, award_delay has passed since
    publication, and every completed attempt has an answer row for every open-ended question.
    """

    def __init__(self, store: ExamStore, settings: AwardSettings, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.settings = settings
        self.clock = clock

    def delay_passed(self, published_at: Optional[datetime]) -> bool:
        if published_at is None:
            return False
        return self.clock() - published_at >= self.settings.award_delay

    def check(self, exam_id: str) -> GateDecision:
        exam = self.store.get_exam(exam_id)
        if exam is None or exam.published_at is None:
            logger.info(f"exam {exam_id} not found or not published")
            return GateDecision(eligible=False, outcome=AwardOutcome.NOT_PUBLISHED)

        if not self.delay_passed(exam.published_at):
            logger.info(f"award delay not passed yet for exam {exam_id}")
            return GateDecision(eligible=False, outcome=AwardOutcome.DELAY_PENDING)

        if not self.open_ended_complete(exam_id):
            logger.info(f"not all open-ended questions answered for exam {exam_id}; skipping prize award")
            return GateDecision(eligible=False, outcome=AwardOutcome.INCOMPLETE_GRADING)

        return GateDecision(eligible=True, outcome=AwardOutcome.AWARDED)

    def open_ended_complete(self, exam_id: str) -> bool:
        open_ended = {
            q.id for q in self.store.list_questions_for_exam(exam_id) if q.kind == QuestionKind.OPEN_ENDED
        }
        if not open_ended:
            return True

        for attempt in self.store.list_completed_attempts_for_exam(exam_id):
            answered = {a.question_id for a in self.store.list_answers_for_attempt(attempt.id)}
            missing = open_ended - answered
            if missing:
                logger.info(f"exam {exam_id}: attempt {attempt.id} has {len(missing)} unanswered open-ended question(s)")
                return False
        return True
