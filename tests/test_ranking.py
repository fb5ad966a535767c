from types import SimpleNamespace

from adaptive.analytics.ranking import rank
from adaptive.utils import clamp


def _row(id_, score):
    return SimpleNamespace(id=id_, score=score)


def test_ties_keep_original_order():
    rows = [_row("A", 10), _row("B", 10), _row("C", 20)]
    assert [r.id for r in rank(rows)] == ["C", "A", "B"]


def test_negative_scores_sort_last():
    rows = [_row("A", -5), _row("B", 0), _row("C", -1)]
    assert [r.id for r in rank(rows)] == ["B", "C", "A"]


def test_truncates_to_page_size():
    rows = [_row(str(i), i) for i in range(120)]
    out = rank(rows, page_size=50)
    assert len(out) == 50
    assert out[0].id == "119"


def test_page_size_is_clamped_into_bounds():
    rows = [_row(str(i), i) for i in range(10)]
    assert len(rank(rows, page_size=0)) == 1
    assert len(rank(rows, page_size=-3)) == 1
    assert len(rank(rows, page_size=10 ** 9, bounds=(1, 4))) == 4


def test_rank_does_not_mutate_input():
    rows = [_row("A", 1), _row("B", 2)]
    rank(rows)
    assert [r.id for r in rows] == ["A", "B"]


def test_clamp():
    assert clamp(0, 1, 90) == 1
    assert clamp(500, 1, 90) == 90
    assert clamp("21", 1, 90) == 21
    assert clamp("abc", 1, 90, default=21) == 21
    assert clamp(None, 1, 5000) == 1
    assert clamp(float("inf"), 1, 90, default=7) == 7
