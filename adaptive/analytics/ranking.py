from __future__ import annotations

from typing import List, Sequence, Tuple, TypeVar

from adaptive.utils import clamp

T = TypeVar("T")

DEFAULT_PAGE_SIZE = 50


def rank(rows: Sequence[T], page_size: int = DEFAULT_PAGE_SIZE, bounds: Tuple[int, int] = (1, 5000)) -> List[T]:
    """Highest score first; equal scores keep their upstream order."""
    size = clamp(page_size, bounds[0], bounds[1], default=DEFAULT_PAGE_SIZE)
    # sorted() is stable, including with reverse=True
    ordered = sorted(rows, key=lambda r: r.score, reverse=True)
    return ordered[:size]


__all__ = ["DEFAULT_PAGE_SIZE", "clamp", "rank"]
