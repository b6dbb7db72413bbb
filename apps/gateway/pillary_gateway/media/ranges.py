"""
Single byte-range parsing (RFC 9110 ``bytes=`` ranges)

Anything that is not one satisfiable range is treated as "no range"; the
caller then serves the full body.
"""
import re
from typing import Optional, Tuple

RANGE_RE = re.compile(r"^bytes=(\d*)-(\d*)$")


def parse_range(header: Optional[str], size: int) -> Optional[Tuple[int, int]]:
    """Inclusive ``(start, end)`` for ``header`` against an object of ``size`` bytes"""
    if not header or size <= 0:
        return None
    match = RANGE_RE.match(header.strip().replace(" ", ""))
    if not match:
        return None
    first, last = match.groups()
    if not first and not last:
        return None

    if not first:
        suffix = int(last)
        if suffix == 0:
            return None
        return max(0, size - suffix), size - 1

    start = int(first)
    end = int(last) if last else size - 1
    if start >= size or end < start:
        return None
    return start, min(end, size - 1)


def content_range(start: int, end: int, size: int) -> str:
    return f"bytes {start}-{end}/{size}"
