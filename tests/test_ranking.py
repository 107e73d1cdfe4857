from datetime import datetime, timedelta
from decimal import Decimal

from exam_awards.ranking import rank, score_bucket
from exam_awards.schemas import Attempt

T0 = datetime(2026, 3, 1, 9, 0, 0)


def make_attempt(attempt_id, score, total=100, minutes=30, status="COMPLETED", student=None):
    return Attempt(
        id=attempt_id,
        exam_id="exam-1",
        student_id=student or f"student-{attempt_id}",
        status=status,
        started_at=T0,
        expires_at=T0 + timedelta(hours=1),
        submitted_at=T0 + timedelta(minutes=minutes) if status == "COMPLETED" else None,
        score=score,
        total_score=total,
    )


def ids(group):
    return [a.id for a in group.attempts]


def test_scenario_two_tied_then_singles():
    attempts = [
        make_attempt("A", 90, minutes=10),
        make_attempt("B", 90, minutes=20),
        make_attempt("C", 70, minutes=30),
        make_attempt("D", 50, minutes=40),
    ]
    groups = rank(attempts)
    assert [(g.start_position, ids(g)) for g in groups] == [
        (1, ["A", "B"]),
        (3, ["C"]),
        (4, ["D"]),
    ]


def test_ties_use_two_decimal_buckets():
    # 0.901 and 0.899 both land on 0.90
    attempts = [make_attempt("A", 901, total=1000), make_attempt("B", 899, total=1000, minutes=5)]
    groups = rank(attempts)
    assert len(groups) == 1
    assert groups[0].bucket == 0.9
    # earlier submission first, group is not split
    assert ids(groups[0]) == ["B", "A"]


def test_fraction_not_raw_score_decides_order():
    attempts = [make_attempt("A", 8, total=10), make_attempt("B", 45, total=50)]
    groups = rank(attempts)
    assert [ids(g) for g in groups] == [["B"], ["A"]]


def test_zero_total_and_zero_score_share_bottom_bucket():
    attempts = [
        make_attempt("A", 0, total=0),
        make_attempt("B", 0, total=10),
        make_attempt("C", 5, total=10),
    ]
    groups = rank(attempts)
    assert [(g.start_position, sorted(ids(g))) for g in groups] == [(1, ["C"]), (2, ["A", "B"])]


def test_unfinished_and_unscored_attempts_are_ignored():
    attempts = [
        make_attempt("A", 5, total=10),
        make_attempt("B", None, total=None),
        make_attempt("C", 9, total=10, status="TIMED_OUT"),
    ]
    assert [ids(g) for g in rank(attempts)] == [["A"]]


def test_empty_input():
    assert rank([]) == []


def test_bucket_rounds_binary_value_half_up():
    assert score_bucket(make_attempt("A", 1, total=8)) == Decimal("0.13")  # 0.125 exactly
    assert score_bucket(make_attempt("B", 57, total=200)) == Decimal("0.28")  # 0.28499999...
    assert score_bucket(make_attempt("C", 2, total=3)) == Decimal("0.67")
