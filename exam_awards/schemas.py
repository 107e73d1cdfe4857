from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class QuestionKind(str, Enum):
    MULTIPLE_CHOICE = "MULTIPLE_CHOICE"
    OPEN_ENDED = "OPEN_ENDED"


class AttemptStatus(str, Enum):
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    TIMED_OUT = "TIMED_OUT"


class AwardOutcome(str, Enum):
    AWARDED = "AWARDED"
    ALREADY_AWARDED = "ALREADY_AWARDED"
    NOT_PUBLISHED = "NOT_PUBLISHED"
    DELAY_PENDING = "DELAY_PENDING"
    INCOMPLETE_GRADING = "INCOMPLETE_GRADING"
    NO_ATTEMPTS = "NO_ATTEMPTS"


class _OrmModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# --- Stored entities ---
class QuestionOption(_OrmModel):
    id: str
    text: str = ""
    order: int = 0


class Question(_OrmModel):
    id: str
    # kept as a plain string: unknown kinds must still load and grade as 0
    kind: str
    max_points: int = Field(gt=0)
    correct_answer: Optional[str] = None
    model_answer: Optional[str] = None
    options: List[QuestionOption] = Field(default_factory=list)


class ExamInfo(_OrmModel):
    id: str
    title: str = ""
    duration_minutes: int = 60
    published_at: Optional[datetime] = None


class Attempt(_OrmModel):
    id: str
    exam_id: str
    student_id: str
    status: AttemptStatus
    started_at: datetime
    expires_at: datetime
    submitted_at: Optional[datetime] = None
    score: Optional[int] = None
    total_score: Optional[int] = None


class Answer(_OrmModel):
    id: str
    attempt_id: str
    question_id: str
    option_id: Optional[str] = None
    free_text: Optional[str] = None
    is_correct: bool = False
    awarded_points: int = Field(default=0, ge=0)


class PrizeAward(_OrmModel):
    student_id: str
    exam_id: str
    position: int
    amount: float
    transaction_id: str
    created_at: datetime


# --- Engine results ---
class GradeResult(BaseModel):
    is_correct: bool
    points: int


class AttemptScore(BaseModel):
    score: int
    total_score: int


class RankGroup(BaseModel):
    start_position: int
    bucket: float
    attempts: List[Attempt]

    @property
    def size(self) -> int:
        return len(self.attempts)


class PrizeShare(BaseModel):
    total_prize: float
    per_student: float
    positions: List[int] = Field(default_factory=list)


class GateDecision(BaseModel):
    eligible: bool
    outcome: AwardOutcome


class ExamAwardResult(BaseModel):
    exam_id: str
    outcome: AwardOutcome
    awards: List[PrizeAward] = Field(default_factory=list)


class PrizeExam(BaseModel):
    exam_id: str
    exam_title: str


class StudentPrizeCheck(BaseModel):
    checked: int = 0
    awarded: int = 0
    prize_amount: float = 0.0
    prize_exams: List[PrizeExam] = Field(default_factory=list)


class AttemptResult(BaseModel):
    """Submitted attempt with every exam question and the graded answers."""

    attempt: Attempt
    exam_title: str
    questions: List[Question] = Field(default_factory=list)
    answers: List[Answer] = Field(default_factory=list)


class StudentAttempt(BaseModel):
    attempt: Attempt
    exam_title: str


class ManualGradeResult(BaseModel):
    answer_id: str
    points: int
    is_correct: bool
    score: int
    total_score: int


# --- Request payloads ---
class SubmitAnswerPayload(BaseModel):
    question_id: str
    option_id: Optional[str] = None
    free_text: Optional[str] = None


class GradeAnswerPayload(BaseModel):
    points: int = Field(ge=0)


class ExpireResult(BaseModel):
    timed_out: int
