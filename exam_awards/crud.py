import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, List, Optional, Protocol

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload, sessionmaker

from exam_awards import models, schemas
from exam_awards.errors import DuplicatePrizeAward, StorageFailure
from exam_awards.schemas import AttemptStatus

logger = logging.getLogger(__name__)


class ExamStore(Protocol):
    """Persistence operations the engine depends on."""

    def get_exam(self, exam_id: str) -> Optional[schemas.ExamInfo]: ...
    def get_question(self, question_id: str) -> Optional[schemas.Question]: ...
    def list_questions_for_exam(self, exam_id: str) -> List[schemas.Question]: ...
    def get_attempt(self, attempt_id: str) -> Optional[schemas.Attempt]: ...
    def list_answers_for_attempt(self, attempt_id: str) -> List[schemas.Answer]: ...
    def upsert_answer_grading(self, answer_id: str, is_correct: bool, points: int) -> None: ...
    def list_completed_attempts_for_exam(self, exam_id: str) -> List[schemas.Attempt]: ...
    def list_completed_exam_ids_for_student(self, student_id: str) -> List[str]: ...
    def count_prize_awards(self, exam_id: str) -> int: ...
    def find_prize_award(self, student_id: str, exam_id: str) -> Optional[schemas.PrizeAward]: ...
    def list_prize_awards_for_student(self, student_id: str) -> List[schemas.PrizeAward]: ...
    def award_prize(self, student_id: str, exam_id: str, position: int, amount: float) -> schemas.PrizeAward: ...


def prize_transaction_id(student_id: str, exam_id: str) -> str:
    return f"{models.PRIZE_TRANSACTION_PREFIX}{exam_id}-{student_id}"


class SqlExamStore:
    """
    ExamStore over SQLAlchemy. One short session per call.
    SQLAlchemy errors surface as StorageFailure, except the prize uniqueness
    violation which surfaces as DuplicatePrizeAward.
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    @contextmanager
    def _session(self) -> Iterator[Session]:
        db = self._session_factory()
        try:
            yield db
        except SQLAlchemyError as e:
            db.rollback()
            raise StorageFailure(str(e)) from e
        finally:
            db.close()

    # ---- exams / questions ------------------------------------------------
    def get_exam(self, exam_id: str) -> Optional[schemas.ExamInfo]:
        with self._session() as db:
            exam = db.get(models.Exam, exam_id)
            return schemas.ExamInfo.model_validate(exam) if exam else None

    def get_question(self, question_id: str) -> Optional[schemas.Question]:
        with self._session() as db:
            q = (
                db.query(models.Question)
                .options(selectinload(models.Question.options))
                .filter(models.Question.id == question_id)
                .first()
            )
            return schemas.Question.model_validate(q) if q else None

    def list_questions_for_exam(self, exam_id: str) -> List[schemas.Question]:
        """
        Topic questions (by topic order, then question order) followed by standalone ones.
        A question reachable both ways is listed once.
        """
        with self._session() as db:
            topic_questions = (
                db.query(models.Question)
                .join(models.Topic, models.Question.topic_id == models.Topic.id)
                .options(selectinload(models.Question.options))
                .filter(models.Topic.exam_id == exam_id)
                .order_by(models.Topic.order, models.Question.order, models.Question.id)
                .all()
            )
            standalone = (
                db.query(models.Question)
                .options(selectinload(models.Question.options))
                .filter(models.Question.exam_id == exam_id)
                .order_by(models.Question.order, models.Question.id)
                .all()
            )
            seen = set()
            result: List[schemas.Question] = []
            for q in topic_questions + standalone:
                if q.id in seen:
                    continue
                seen.add(q.id)
                result.append(schemas.Question.model_validate(q))
            return result

    # ---- attempts ---------------------------------------------------------
    def get_attempt(self, attempt_id: str) -> Optional[schemas.Attempt]:
        with self._session() as db:
            attempt = db.get(models.ExamAttempt, attempt_id)
            return schemas.Attempt.model_validate(attempt) if attempt else None

    def find_latest_attempt(self, exam_id: str, student_id: str) -> Optional[schemas.Attempt]:
        with self._session() as db:
            attempt = (
                db.query(models.ExamAttempt)
                .filter(
                    models.ExamAttempt.exam_id == exam_id,
                    models.ExamAttempt.student_id == student_id,
                    models.ExamAttempt.status.in_([AttemptStatus.IN_PROGRESS.value, AttemptStatus.COMPLETED.value]),
                )
                .order_by(models.ExamAttempt.started_at.desc())
                .first()
            )
            return schemas.Attempt.model_validate(attempt) if attempt else None

    def list_attempts_for_student(self, student_id: str) -> List[schemas.StudentAttempt]:
        """Every attempt of the student, newest first, with its exam title."""
        with self._session() as db:
            rows = (
                db.query(models.ExamAttempt, models.Exam.title)
                .join(models.Exam, models.Exam.id == models.ExamAttempt.exam_id)
                .filter(models.ExamAttempt.student_id == student_id)
                .order_by(models.ExamAttempt.started_at.desc())
                .all()
            )
            return [
                schemas.StudentAttempt(attempt=schemas.Attempt.model_validate(a), exam_title=title or "")
                for a, title in rows
            ]

    def create_attempt(self, exam_id: str, student_id: str, started_at: datetime, expires_at: datetime) -> schemas.Attempt:
        with self._session() as db:
            attempt = models.ExamAttempt(
                exam_id=exam_id,
                student_id=student_id,
                status=AttemptStatus.IN_PROGRESS.value,
                started_at=started_at,
                expires_at=expires_at,
            )
            db.add(attempt)
            db.commit()
            return schemas.Attempt.model_validate(attempt)

    def set_attempt_status(self, attempt_id: str, status: AttemptStatus) -> None:
        with self._session() as db:
            db.query(models.ExamAttempt).filter(models.ExamAttempt.id == attempt_id).update(
                {models.ExamAttempt.status: status.value}, synchronize_session=False
            )
            db.commit()

    def complete_attempt(self, attempt_id: str, score: int, total_score: int, submitted_at: datetime) -> Optional[schemas.Attempt]:
        """IN_PROGRESS -> COMPLETED. Returns None if the attempt already left IN_PROGRESS."""
        with self._session() as db:
            changed = (
                db.query(models.ExamAttempt)
                .filter(
                    models.ExamAttempt.id == attempt_id,
                    models.ExamAttempt.status == AttemptStatus.IN_PROGRESS.value,
                )
                .update(
                    {
                        models.ExamAttempt.status: AttemptStatus.COMPLETED.value,
                        models.ExamAttempt.score: score,
                        models.ExamAttempt.total_score: total_score,
                        models.ExamAttempt.submitted_at: submitted_at,
                    },
                    synchronize_session=False,
                )
            )
            db.commit()
            if not changed:
                return None
            return schemas.Attempt.model_validate(db.get(models.ExamAttempt, attempt_id))

    def update_attempt_scores(self, attempt_id: str, score: int, total_score: int) -> None:
        with self._session() as db:
            db.query(models.ExamAttempt).filter(models.ExamAttempt.id == attempt_id).update(
                {models.ExamAttempt.score: score, models.ExamAttempt.total_score: total_score},
                synchronize_session=False,
            )
            db.commit()

    def expire_attempts(self, now: datetime) -> int:
        with self._session() as db:
            count = (
                db.query(models.ExamAttempt)
                .filter(
                    models.ExamAttempt.status == AttemptStatus.IN_PROGRESS.value,
                    models.ExamAttempt.expires_at < now,
                )
                .update({models.ExamAttempt.status: AttemptStatus.TIMED_OUT.value}, synchronize_session=False)
            )
            db.commit()
            return count

    def list_completed_attempts_for_exam(self, exam_id: str) -> List[schemas.Attempt]:
        with self._session() as db:
            rows = (
                db.query(models.ExamAttempt)
                .filter(
                    models.ExamAttempt.exam_id == exam_id,
                    models.ExamAttempt.status == AttemptStatus.COMPLETED.value,
                )
                .order_by(models.ExamAttempt.submitted_at, models.ExamAttempt.id)
                .all()
            )
            return [schemas.Attempt.model_validate(r) for r in rows]

    def list_completed_exam_ids_for_student(self, student_id: str) -> List[str]:
        with self._session() as db:
            rows = (
                db.query(models.ExamAttempt.exam_id)
                .filter(
                    models.ExamAttempt.student_id == student_id,
                    models.ExamAttempt.status == AttemptStatus.COMPLETED.value,
                )
                .distinct()
                .order_by(models.ExamAttempt.exam_id)
                .all()
            )
            return [r[0] for r in rows]

    # ---- answers ----------------------------------------------------------
    def get_answer(self, answer_id: str) -> Optional[schemas.Answer]:
        with self._session() as db:
            answer = db.get(models.Answer, answer_id)
            return schemas.Answer.model_validate(answer) if answer else None

    def list_answers_for_attempt(self, attempt_id: str) -> List[schemas.Answer]:
        with self._session() as db:
            rows = db.query(models.Answer).filter(models.Answer.attempt_id == attempt_id).all()
            return [schemas.Answer.model_validate(r) for r in rows]

    def upsert_answer(
        self,
        attempt_id: str,
        question_id: str,
        option_id: Optional[str],
        free_text: Optional[str],
    ) -> schemas.Answer:
        """Create or overwrite the single answer for (attempt, question)."""
        with self._session() as db:
            answer = (
                db.query(models.Answer)
                .filter(models.Answer.attempt_id == attempt_id, models.Answer.question_id == question_id)
                .first()
            )
            if answer is None:
                answer = models.Answer(attempt_id=attempt_id, question_id=question_id)
                db.add(answer)
            answer.option_id = option_id
            answer.free_text = free_text
            try:
                db.commit()
            except IntegrityError:
                # lost a race with a concurrent insert for the same question; overwrite theirs
                db.rollback()
                answer = (
                    db.query(models.Answer)
                    .filter(models.Answer.attempt_id == attempt_id, models.Answer.question_id == question_id)
                    .one()
                )
                answer.option_id = option_id
                answer.free_text = free_text
                db.commit()
            return schemas.Answer.model_validate(answer)

    def upsert_answer_grading(self, answer_id: str, is_correct: bool, points: int) -> None:
        with self._session() as db:
            db.query(models.Answer).filter(models.Answer.id == answer_id).update(
                {models.Answer.is_correct: is_correct, models.Answer.awarded_points: points},
                synchronize_session=False,
            )
            db.commit()

    # ---- prizes -----------------------------------------------------------
    def _prize_query(self, db: Session):
        return db.query(models.Payment).filter(models.Payment.kind == models.PRIZE_KIND)

    def count_prize_awards(self, exam_id: str) -> int:
        with self._session() as db:
            return (
                db.query(func.count(models.Payment.id))
                .filter(models.Payment.kind == models.PRIZE_KIND, models.Payment.exam_id == exam_id)
                .scalar()
                or 0
            )

    def find_prize_award(self, student_id: str, exam_id: str) -> Optional[schemas.PrizeAward]:
        with self._session() as db:
            row = (
                self._prize_query(db)
                .filter(models.Payment.student_id == student_id, models.Payment.exam_id == exam_id)
                .first()
            )
            return schemas.PrizeAward.model_validate(row) if row else None

    def list_prize_awards_for_exam(self, exam_id: str) -> List[schemas.PrizeAward]:
        with self._session() as db:
            rows = (
                self._prize_query(db)
                .filter(models.Payment.exam_id == exam_id)
                .order_by(models.Payment.position, models.Payment.student_id)
                .all()
            )
            return [schemas.PrizeAward.model_validate(r) for r in rows]

    def list_prize_awards_for_student(self, student_id: str) -> List[schemas.PrizeAward]:
        with self._session() as db:
            rows = (
                self._prize_query(db)
                .filter(models.Payment.student_id == student_id)
                .order_by(models.Payment.created_at)
                .all()
            )
            return [schemas.PrizeAward.model_validate(r) for r in rows]

    def award_prize(self, student_id: str, exam_id: str, position: int, amount: float) -> schemas.PrizeAward:
        """
        Insert the prize row and credit the balance in one transaction.
        Raises DuplicatePrizeAward when (student, exam) already has a prize,
        StorageFailure for any other rejected write (e.g. unknown student).
        """
        transaction_id = prize_transaction_id(student_id, exam_id)
        with self._session() as db:
            payment = models.Payment(
                student_id=student_id,
                exam_id=exam_id,
                kind=models.PRIZE_KIND,
                transaction_id=transaction_id,
                amount=amount,
                position=position,
                description=f"Prize for position {position}",
            )
            db.add(payment)
            try:
                db.flush()
                # increment evaluated in SQL, never read-modify-write
                credited = db.execute(
                    update(models.Student)
                    .where(models.Student.id == student_id)
                    .values(balance=models.Student.balance + amount)
                )
                if credited.rowcount != 1:
                    db.rollback()
                    raise StorageFailure(f"student {student_id} not found; prize for exam {exam_id} not recorded")
                db.commit()
            except IntegrityError as e:
                db.rollback()
                if self._prize_exists(db, student_id, exam_id, transaction_id):
                    raise DuplicatePrizeAward(student_id, exam_id) from e
                raise StorageFailure(f"prize for student {student_id} on exam {exam_id} rejected: {e.orig}") from e
            return schemas.PrizeAward.model_validate(payment)

    @staticmethod
    def _prize_exists(db: Session, student_id: str, exam_id: str, transaction_id: str) -> bool:
        # only a uniqueness clash with an existing prize counts as a duplicate
        query = db.query(models.Payment.id).filter(
            models.Payment.kind == models.PRIZE_KIND,
            ((models.Payment.student_id == student_id) & (models.Payment.exam_id == exam_id))
            | (models.Payment.transaction_id == transaction_id),
        )
        return query.first() is not None

    # ---- students ---------------------------------------------------------
    def get_balance(self, student_id: str) -> Optional[float]:
        with self._session() as db:
            student = db.get(models.Student, student_id)
            return student.balance if student else None
