from typing import List, Sequence

from exam_awards.schemas import PrizeShare


class PrizePoolAllocator:
    """Splits the prize table across tie-groups: a group pools the prizes of the positions it covers."""

    def __init__(self, prize_amounts: Sequence[float]):
        self.prize_amounts: List[float] = list(prize_amounts)

    @property
    def positions(self) -> int:
        return len(self.prize_amounts)

    def allocate(self, start_position: int, size: int) -> PrizeShare:
        if size <= 0 or start_position > self.positions:
            return PrizeShare(total_prize=0.0, per_student=0.0)

        last = min(start_position + size - 1, self.positions)
        covered = list(range(start_position, last + 1))
        total = sum(self.prize_amounts[p - 1] for p in covered)
        return PrizeShare(total_prize=total, per_student=total / size, positions=covered)
