import pytest

from exam_awards.prizes import PrizePoolAllocator


@pytest.fixture
def allocator():
    return PrizePoolAllocator([10, 7, 3])


def test_single_winner_takes_position_prize(allocator):
    share = allocator.allocate(1, 1)
    assert share.total_prize == 10
    assert share.per_student == 10
    assert share.positions == [1]


def test_tie_at_top_splits_first_and_second(allocator):
    share = allocator.allocate(1, 2)
    assert share.total_prize == 17
    assert share.per_student == 8.5
    assert share.positions == [1, 2]


def test_group_overflowing_table_only_pools_paid_positions(allocator):
    share = allocator.allocate(2, 4)
    assert share.total_prize == 10
    assert share.per_student == 2.5
    assert share.positions == [2, 3]


def test_three_way_tie_keeps_fraction(allocator):
    share = allocator.allocate(1, 3)
    assert share.per_student == pytest.approx(20 / 3)


def test_group_beyond_table_gets_nothing(allocator):
    share = allocator.allocate(4, 1)
    assert share.total_prize == 0
    assert share.per_student == 0
    assert share.positions == []


def test_custom_table_length():
    allocator = PrizePoolAllocator([50, 20, 10, 5, 1])
    assert allocator.positions == 5
    assert allocator.allocate(4, 3).total_prize == 6
