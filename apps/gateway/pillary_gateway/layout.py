"""
Pyramid layout helpers

Row ``r`` holds ``2r + 1`` items, starting at index ``r * r``.
"""
import math
from typing import Iterator, Tuple

from .exceptions import InvalidRange


def row_of(index: int) -> int:
    """Row containing ``index``"""
    if index < 0:
        raise ValueError(f"index must be non-negative: {index}")
    return math.isqrt(index)


def row_span(row: int) -> Tuple[int, int]:
    """Inclusive ``(first, last)`` index of ``row``"""
    if row < 0:
        raise ValueError(f"row must be non-negative: {row}")
    start = row * row
    return start, start + 2 * row


def row_width(row: int) -> int:
    return 2 * row + 1


def iter_rows(rows: int, total: int) -> Iterator[Tuple[int, int, int]]:
    """Yield ``(row, first, last)`` apex-first, truncated to ``total`` items"""
    for row in range(rows):
        first, last = row_span(row)
        if first >= total:
            return
        yield row, first, min(last, total - 1)


def is_valid_index(index: int, total: int) -> bool:
    return 0 <= index < total


def clamp_range(start: int, end: int, total: int, max_items: int) -> Tuple[int, int]:
    """
    Clamp an inclusive batch range to the index space

    Bounds are clamped to ``[0, total - 1]`` and the span is truncated to
    ``max_items`` entries. Raises InvalidRange when nothing remains.
    """
    if total <= 0:
        raise InvalidRange("collection is empty")
    lo = max(0, start)
    hi = min(total - 1, end)
    if lo > hi:
        raise InvalidRange(f"empty range: from={start} to={end}")
    if max_items > 0 and hi - lo + 1 > max_items:
        hi = lo + max_items - 1
    return lo, hi
