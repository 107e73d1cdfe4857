import logging
import re
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Optional

from exam_awards.config import AwardSettings
from exam_awards.errors import MalformedQuestionData
from exam_awards.normalizer import normalize
from exam_awards.schemas import Answer, GradeResult, Question, QuestionKind

logger = logging.getLogger(__name__)

_NOT_CORRECT = GradeResult(is_correct=False, points=0)
_LEADING_INT = re.compile(r"\s*([+-]?\d+)")


def round_half_away_from_zero(value: float) -> int:
    # Decimal(value) is the exact binary value, so x.5 boundaries are not skewed by str()
    return int(Decimal(value).quantize(Decimal(1), rounding=ROUND_HALF_UP))


class AnswerGrader:
    """
    Grades one answer against one question.
    - MULTIPLE_CHOICE: option id match (or legacy zero-based index into ordered options)
    - OPEN_ENDED: normalized exact match, else token-overlap similarity
    - anything else: not correct, 0 points
    Pure: no storage access, never raises.
    """

    def __init__(self, settings: Optional[AwardSettings] = None):
        self.settings = settings or AwardSettings()

    def grade(self, question: Question, answer: Answer) -> GradeResult:
        try:
            if question.kind == QuestionKind.MULTIPLE_CHOICE:
                if self.check_multiple_choice(question, answer):
                    return GradeResult(is_correct=True, points=question.max_points)
                return _NOT_CORRECT
            if question.kind == QuestionKind.OPEN_ENDED:
                return self.grade_open_ended(question, answer)
        except MalformedQuestionData as e:
            logger.warning(f"question {question.id}: {e}; graded as not correct")
            return _NOT_CORRECT

        logger.warning(f"question {question.id}: unknown kind {question.kind!r}; graded as not correct")
        return _NOT_CORRECT

    # ------------------------------------------------------------------
    def check_multiple_choice(self, question: Question, answer: Answer) -> bool:
        ref = question.correct_answer
        if not answer.option_id or not ref:
            return False

        # new format: option id (cuid/uuid); old format: "0", "1", ...
        if len(ref) > self.settings.option_id_min_length:
            return answer.option_id == ref

        # leading integer only, so legacy values like "1.0" or "2 " still resolve
        match = _LEADING_INT.match(ref)
        if match is None:
            raise MalformedQuestionData(f"correct answer {ref!r} is neither an option id nor an index")
        index = int(match.group(1))

        ordered = sorted(question.options, key=lambda o: o.order)
        if not 0 <= index < len(ordered):
            raise MalformedQuestionData(f"correct answer index {index} out of range ({len(ordered)} options)")
        return answer.option_id == ordered[index].id

    def grade_open_ended(self, question: Question, answer: Answer) -> GradeResult:
        student = normalize(answer.free_text)
        model = normalize(question.model_answer)

        if not student or not model:
            return _NOT_CORRECT

        if student == model:
            return GradeResult(is_correct=True, points=question.max_points)

        similarity = self.similarity(student, model)
        if similarity is None or similarity < self.settings.similarity_threshold:
            return _NOT_CORRECT

        return GradeResult(
            is_correct=True,
            points=round_half_away_from_zero(question.max_points * similarity),
        )

    def similarity(self, normalized_student: str, normalized_model: str) -> Optional[float]:
        """
        Share of matching tokens over the larger token list.
        None when either side has no token longer than min_token_length.
        """
        student_tokens = self._tokens(normalized_student)
        model_tokens = self._tokens(normalized_model)
        if not student_tokens or not model_tokens:
            return None

        matching = sum(
            1
            for word in student_tokens
            if any(word in model_word or model_word in word for model_word in model_tokens)
        )
        return matching / max(len(student_tokens), len(model_tokens))

    def _tokens(self, normalized: str) -> List[str]:
        return [w for w in normalized.split(" ") if len(w) > self.settings.min_token_length]
