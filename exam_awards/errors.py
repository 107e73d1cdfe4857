"""Exceptions raised by the grading and prize engine."""


class ExamAwardsError(Exception):
    """Base class for every error raised by this package."""


class StorageFailure(ExamAwardsError):
    """The persistence layer failed; callers own retry policy."""


class DuplicatePrizeAward(ExamAwardsError):
    """A prize row already exists for (student_id, exam_id)."""

    def __init__(self, student_id: str, exam_id: str):
        super().__init__(f"prize already awarded to student {student_id} for exam {exam_id}")
        self.student_id = student_id
        self.exam_id = exam_id


class MalformedQuestionData(ExamAwardsError):
    """Question data the grader cannot interpret. Never escapes the grader."""


# --- attempt lifecycle ---
class ExamNotFound(ExamAwardsError):
    pass


class ExamNotPublished(ExamAwardsError):
    pass


class AttemptNotFound(ExamAwardsError):
    pass


class AttemptAlreadyCompleted(ExamAwardsError):
    pass


class AttemptExpired(ExamAwardsError):
    pass


class InvalidAttemptState(ExamAwardsError):
    pass


class QuestionNotFound(ExamAwardsError):
    pass


class AnswerNotFound(ExamAwardsError):
    pass


class InvalidGrade(ExamAwardsError):
    pass
