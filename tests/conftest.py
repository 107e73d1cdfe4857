import uuid
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from exam_awards import models
from exam_awards.attempts import AttemptService
from exam_awards.awards import PrizeAwardCoordinator
from exam_awards.config import AwardSettings
from exam_awards.crud import SqlExamStore
from exam_awards.database import get_session_local, init_db

NOW = datetime(2026, 3, 1, 12, 0, 0)


class FakeClock:
    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class Seeder:
    """Writes fixture rows straight through the ORM."""

    def __init__(self, session_factory):
        self._session_factory = session_factory

    def _add(self, obj):
        with self._session_factory() as db:
            db.add(obj)
            db.commit()
            return obj

    def student(self, student_id: Optional[str] = None, balance: float = 0.0) -> str:
        row = models.Student(email=f"{uuid.uuid4().hex}@example.com", balance=balance)
        if student_id:
            row.id = student_id
        return self._add(row).id

    def exam(
        self,
        title: str = "Algebra",
        published_at: Optional[datetime] = NOW - timedelta(hours=1),
        duration_minutes: int = 60,
    ) -> str:
        return self._add(models.Exam(title=title, published_at=published_at, duration_minutes=duration_minutes)).id

    def topic(self, exam_id: str, order: int = 0) -> str:
        return self._add(models.Topic(exam_id=exam_id, title=f"Topic {order}", order=order)).id

    def multiple_choice(
        self,
        exam_id: Optional[str] = None,
        topic_id: Optional[str] = None,
        max_points: int = 5,
        correct_index: int = 0,
        legacy_index: bool = False,
        option_texts: Tuple[str, ...] = ("A", "B", "C", "D"),
        order: int = 0,
    ) -> Tuple[str, List[str]]:
        """Returns (question id, option ids in display order)."""
        with self._session_factory() as db:
            q = models.Question(
                exam_id=exam_id,
                topic_id=topic_id,
                kind="MULTIPLE_CHOICE",
                text="Pick one",
                max_points=max_points,
                order=order,
            )
            q.options = [models.QuestionOption(text=t, order=i) for i, t in enumerate(option_texts)]
            db.add(q)
            db.flush()
            option_ids = [o.id for o in q.options]
            q.correct_answer = str(correct_index) if legacy_index else option_ids[correct_index]
            db.commit()
            return q.id, option_ids

    def open_ended(
        self,
        exam_id: Optional[str] = None,
        topic_id: Optional[str] = None,
        max_points: int = 10,
        model_answer: str = "photosynthesis converts light energy",
        order: int = 0,
    ) -> str:
        q = models.Question(
            exam_id=exam_id,
            topic_id=topic_id,
            kind="OPEN_ENDED",
            text="Explain",
            max_points=max_points,
            model_answer=model_answer,
            order=order,
        )
        return self._add(q).id

    def attempt(
        self,
        exam_id: str,
        student_id: str,
        status: str = "COMPLETED",
        score: Optional[int] = None,
        total_score: Optional[int] = None,
        submitted_at: Optional[datetime] = None,
        started_at: datetime = NOW - timedelta(minutes=50),
        expires_at: Optional[datetime] = None,
    ) -> str:
        if submitted_at is None and status == "COMPLETED":
            submitted_at = started_at + timedelta(minutes=30)
        row = models.ExamAttempt(
            exam_id=exam_id,
            student_id=student_id,
            status=status,
            score=score,
            total_score=total_score,
            started_at=started_at,
            expires_at=expires_at or started_at + timedelta(minutes=60),
            submitted_at=submitted_at,
        )
        return self._add(row).id

    def answer(
        self,
        attempt_id: str,
        question_id: str,
        option_id: Optional[str] = None,
        free_text: Optional[str] = None,
        awarded_points: int = 0,
        is_correct: bool = False,
    ) -> str:
        row = models.Answer(
            attempt_id=attempt_id,
            question_id=question_id,
            option_id=option_id,
            free_text=free_text,
            awarded_points=awarded_points,
            is_correct=is_correct,
        )
        return self._add(row).id

    def completed_with_fraction(self, exam_id: str, student_id: str, score: int, total: int, minutes_in: int) -> str:
        return self.attempt(
            exam_id,
            student_id,
            score=score,
            total_score=total,
            submitted_at=NOW - timedelta(minutes=60 - minutes_in),
        )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return AwardSettings(prize_amounts=[10, 7, 3], award_delay=timedelta(minutes=10))


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return get_session_local(engine=engine)


@pytest.fixture
def store(session_factory):
    return SqlExamStore(session_factory)


@pytest.fixture
def seed(session_factory):
    return Seeder(session_factory)


@pytest.fixture
def coordinator(store, settings, clock):
    return PrizeAwardCoordinator(store, settings, clock=clock)


@pytest.fixture
def service(store, settings, clock, coordinator):
    return AttemptService(store, settings, coordinator=coordinator, clock=clock)
