import uuid

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import relationship

from exam_awards.config import utcnow
from exam_awards.database import Base


def _new_id() -> str:
    return uuid.uuid4().hex


PRIZE_KIND = "PRIZE"
PRIZE_TRANSACTION_PREFIX = "PRIZE-"


class Student(Base):
    __tablename__ = "students"

    id = Column(String, primary_key=True, default=_new_id)
    email = Column(String, unique=True, index=True)
    first_name = Column(String)
    last_name = Column(String)
    balance = Column(Float, nullable=False, default=0.0)


class Exam(Base):
    __tablename__ = "exams"

    id = Column(String, primary_key=True, default=_new_id)
    title = Column(String, nullable=False, default="")
    duration_minutes = Column(Integer, nullable=False, default=60)
    published_at = Column(DateTime, nullable=True)  # None = draft
    created_at = Column(DateTime, nullable=False, default=utcnow)

    topics = relationship("Topic", back_populates="exam", order_by="Topic.order")
    questions = relationship("Question", back_populates="exam", order_by="Question.order")


class Topic(Base):
    __tablename__ = "topics"

    id = Column(String, primary_key=True, default=_new_id)
    exam_id = Column(String, ForeignKey("exams.id"), nullable=False, index=True)
    title = Column(String, nullable=False, default="")
    order = Column(Integer, nullable=False, default=0)

    exam = relationship("Exam", back_populates="topics")
    questions = relationship("Question", back_populates="topic", order_by="Question.order")


class Question(Base):
    __tablename__ = "questions"

    id = Column(String, primary_key=True, default=_new_id)
    # standalone questions carry exam_id, topic-grouped ones carry topic_id
    exam_id = Column(String, ForeignKey("exams.id"), nullable=True, index=True)
    topic_id = Column(String, ForeignKey("topics.id"), nullable=True, index=True)
    kind = Column(String, nullable=False, index=True)  # 'MULTIPLE_CHOICE', 'OPEN_ENDED'
    text = Column(Text, nullable=False, default="")
    max_points = Column(Integer, nullable=False, default=1)
    correct_answer = Column(String, nullable=True)  # option id, or legacy index "0".."3"
    model_answer = Column(Text, nullable=True)
    order = Column(Integer, nullable=False, default=0)

    exam = relationship("Exam", back_populates="questions")
    topic = relationship("Topic", back_populates="questions")
    options = relationship(
        "QuestionOption",
        back_populates="question",
        order_by="QuestionOption.order",
        cascade="all, delete-orphan",
    )


class QuestionOption(Base):
    __tablename__ = "question_options"

    id = Column(String, primary_key=True, default=_new_id)
    question_id = Column(String, ForeignKey("questions.id"), nullable=False, index=True)
    text = Column(Text, nullable=False, default="")
    order = Column(Integer, nullable=False, default=0)

    question = relationship("Question", back_populates="options")


class ExamAttempt(Base):
    __tablename__ = "exam_attempts"

    id = Column(String, primary_key=True, default=_new_id)
    exam_id = Column(String, ForeignKey("exams.id"), nullable=False, index=True)
    student_id = Column(String, ForeignKey("students.id"), nullable=False, index=True)
    status = Column(String, nullable=False, default="IN_PROGRESS", index=True)
    started_at = Column(DateTime, nullable=False, default=utcnow)
    expires_at = Column(DateTime, nullable=False)
    submitted_at = Column(DateTime, nullable=True)
    score = Column(Integer, nullable=True)
    total_score = Column(Integer, nullable=True)


class Answer(Base):
    __tablename__ = "answers"
    __table_args__ = (UniqueConstraint("attempt_id", "question_id", name="uq_answer_attempt_question"),)

    id = Column(String, primary_key=True, default=_new_id)
    attempt_id = Column(String, ForeignKey("exam_attempts.id"), nullable=False, index=True)
    question_id = Column(String, ForeignKey("questions.id"), nullable=False, index=True)
    option_id = Column(String, nullable=True)
    free_text = Column(Text, nullable=True)
    is_correct = Column(Boolean, nullable=False, default=False)
    awarded_points = Column(Integer, nullable=False, default=0)


class Payment(Base):
    """
    Ledger row. Prize awards are the rows with kind='PRIZE' and a 'PRIZE-' transaction id;
    the partial unique index allows at most one of them per (student, exam).
    """

    __tablename__ = "payments"
    __table_args__ = (
        Index(
            "uq_prize_award_student_exam",
            "student_id",
            "exam_id",
            unique=True,
            sqlite_where=text("kind = 'PRIZE'"),
            postgresql_where=text("kind = 'PRIZE'"),
        ),
    )

    id = Column(String, primary_key=True, default=_new_id)
    student_id = Column(String, ForeignKey("students.id"), nullable=False, index=True)
    exam_id = Column(String, ForeignKey("exams.id"), nullable=True, index=True)
    kind = Column(String, nullable=False, index=True)
    transaction_id = Column(String, nullable=False, unique=True)
    amount = Column(Float, nullable=False)
    position = Column(Integer, nullable=True)
    description = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
