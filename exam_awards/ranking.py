from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Iterable, List

from exam_awards.schemas import Attempt, AttemptStatus, RankGroup

_TWO_PLACES = Decimal("0.01")


def score_bucket(attempt: Attempt) -> Decimal:
    """
    score/total_score rounded half-up to 2 decimals (0 when total_score is 0).
    Rounds the binary value of the fraction, so 57/200 (0.28499...) lands in 0.28.
    """
    if not attempt.score or not attempt.total_score or attempt.total_score <= 0:
        return Decimal("0.00")
    fraction = attempt.score / attempt.total_score
    return Decimal(fraction).quantize(_TWO_PLACES, rounding=ROUND_HALF_UP)


def _submission_key(attempt: Attempt):
    # unsubmitted rows sort last inside a tie
    return (attempt.submitted_at or datetime.max, attempt.id)


def rank(completed_attempts: Iterable[Attempt]) -> List[RankGroup]:
    """
    Group completed attempts into tie-groups by 2-decimal score fraction, best first.
    Each group starts at the previous group's start + its size.
    """
    buckets: Dict[Decimal, List[Attempt]] = {}
    for attempt in completed_attempts:
        if attempt.status != AttemptStatus.COMPLETED:
            continue
        if attempt.score is None or attempt.total_score is None:
            continue
        buckets.setdefault(score_bucket(attempt), []).append(attempt)

    groups: List[RankGroup] = []
    position = 1
    for bucket in sorted(buckets, reverse=True):
        tied = sorted(buckets[bucket], key=_submission_key)
        groups.append(RankGroup(start_position=position, bucket=float(bucket), attempts=tied))
        position += len(tied)
    return groups
