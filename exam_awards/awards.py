import logging
from datetime import datetime
from typing import Callable, List, Optional, Set

from exam_awards.config import AwardSettings, utcnow
from exam_awards.crud import ExamStore
from exam_awards.errors import DuplicatePrizeAward
from exam_awards.gate import AwardGate
from exam_awards.prizes import PrizePoolAllocator
from exam_awards.ranking import rank
from exam_awards.schemas import (
    AwardOutcome,
    ExamAwardResult,
    PrizeAward,
    PrizeExam,
    StudentPrizeCheck,
)

logger = logging.getLogger(__name__)


class PrizeAwardCoordinator:
    """
    Single entry point for prize distribution, shared by exam submission,
    manual re-grading and the student login sweep.

    At most one prize per (student, exam): the count/find checks skip work early,
    the store's uniqueness constraint is what finally rejects a second payment.
    """

    def __init__(
        self,
        store: ExamStore,
        settings: Optional[AwardSettings] = None,
        gate: Optional[AwardGate] = None,
        allocator: Optional[PrizePoolAllocator] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.settings = settings or AwardSettings()
        self.gate = gate or AwardGate(store, self.settings, clock)
        self.allocator = allocator or PrizePoolAllocator(self.settings.prize_amounts)

    # ------------------------------------------------------------------
    def award_exam(self, exam_id: str) -> ExamAwardResult:
        logger.info(f"starting prize award process for exam {exam_id}")

        existing = self.store.count_prize_awards(exam_id)
        if existing >= self.allocator.positions:
            logger.info(f"prizes already awarded for exam {exam_id} ({existing} prizes found)")
            return ExamAwardResult(exam_id=exam_id, outcome=AwardOutcome.ALREADY_AWARDED)

        decision = self.gate.check(exam_id)
        if not decision.eligible:
            return ExamAwardResult(exam_id=exam_id, outcome=decision.outcome)

        attempts = self.store.list_completed_attempts_for_exam(exam_id)
        if not attempts:
            logger.info(f"no completed attempts found for exam {exam_id}")
            return ExamAwardResult(exam_id=exam_id, outcome=AwardOutcome.NO_ATTEMPTS)

        paid: Set[str] = {
            a.student_id for a in attempts if self.store.find_prize_award(a.student_id, exam_id) is not None
        }
        awarded: List[PrizeAward] = []

        for group in rank(attempts):
            if group.start_position > self.allocator.positions:
                break
            share = self.allocator.allocate(group.start_position, group.size)
            if share.per_student <= 0:
                continue

            for attempt in group.attempts:
                student_id = attempt.student_id
                if student_id in paid:
                    continue
                award = self._award_once(student_id, exam_id, group.start_position, share.per_student)
                paid.add(student_id)
                if award is not None:
                    awarded.append(award)

        logger.info(f"prize award completed for exam {exam_id}: {len(awarded)} new prize(s)")
        return ExamAwardResult(exam_id=exam_id, outcome=AwardOutcome.AWARDED, awards=awarded)

    def _award_once(self, student_id: str, exam_id: str, position: int, amount: float) -> Optional[PrizeAward]:
        # re-check right before writing; another trigger may have paid meanwhile
        if self.store.find_prize_award(student_id, exam_id) is not None:
            logger.info(f"student {student_id} already has prize for exam {exam_id}")
            return None
        try:
            award = self.store.award_prize(student_id, exam_id, position, amount)
        except DuplicatePrizeAward:
            logger.info(f"concurrent prize for student {student_id} on exam {exam_id}; skipped")
            return None
        logger.info(f"awarded {amount} AZN to student {student_id} for exam {exam_id} (position {position})")
        return award

    # ------------------------------------------------------------------
    def check_and_award_for_student(self, student_id: str) -> StudentPrizeCheck:
        """
        Login sweep: award every completed exam of the student that became eligible
        since the last check. Reports only prizes that did not exist before the call.
        """
        logger.info(f"checking prizes for student {student_id}")

        exam_ids = self.store.list_completed_exam_ids_for_student(student_id)
        if not exam_ids:
            return StudentPrizeCheck()

        before = {p.exam_id for p in self.store.list_prize_awards_for_student(student_id)}
        checked = 0

        for exam_id in exam_ids:
            if exam_id in before:
                logger.info(f"student {student_id} already has prize for exam {exam_id}")
                continue

            if not self.gate.check(exam_id).eligible:
                continue

            if self.store.count_prize_awards(exam_id) >= self.allocator.positions:
                logger.info(f"prizes already awarded for exam {exam_id}")
                continue

            checked += 1
            if self.store.find_prize_award(student_id, exam_id) is None:
                self.award_exam(exam_id)

        new_awards = [
            p for p in self.store.list_prize_awards_for_student(student_id)
            if p.exam_id in exam_ids and p.exam_id not in before
        ]
        prize_exams = []
        for award in new_awards:
            exam = self.store.get_exam(award.exam_id)
            prize_exams.append(PrizeExam(exam_id=award.exam_id, exam_title=(exam.title if exam else "") or "Unknown exam"))

        total = sum(p.amount for p in new_awards)
        logger.info(
            f"student {student_id} - checked: {checked}, awarded: {len(new_awards)}, prize: {total} AZN"
        )
        return StudentPrizeCheck(
            checked=checked,
            awarded=len(new_awards),
            prize_amount=total,
            prize_exams=prize_exams,
        )
