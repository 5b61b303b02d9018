from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Iterator, Optional, Sequence

from bcmp.errors import InvalidRangeError


MAX_UINT64 = (1 << 64) - 1


class EndBoundary(enum.Enum):
    EXCLUSIVE = "exclusive"
    INCLUSIVE = "inclusive"


@dataclass(frozen=True)
class BlockRange:
    """
    start may be negative while unresolved (relative to a chain head);
    stop None means open-ended.
    """
    start: int
    stop: Optional[int] = None

    def is_resolved(self) -> bool:
        return self.start >= 0 and (self.stop is None or self.stop >= 0)

    def stop_or(self, default: int) -> int:
        return default if self.stop is None else self.stop

    def contains(self, n: int, boundary: EndBoundary = EndBoundary.EXCLUSIVE) -> bool:
        if n < self.start:
            return False
        if self.stop is None:
            return True
        if boundary is EndBoundary.EXCLUSIVE:
            return n < self.stop
        return n <= self.stop

    def validate(self, boundary: EndBoundary = EndBoundary.EXCLUSIVE) -> None:
        if not self.is_resolved():
            raise InvalidRangeError(
                "invalid block range, you must provide a closed range fully resolved (no negative value)"
            )
        if self.stop is None:
            return
        if boundary is EndBoundary.EXCLUSIVE and self.start >= self.stop:
            raise InvalidRangeError(f"invalid block range {self}: start must be lower than stop")
        if boundary is EndBoundary.INCLUSIVE and self.start > self.stop:
            raise InvalidRangeError(f"invalid block range {self}: start must not exceed stop")

    def split(self, segment_size: int, boundary: EndBoundary = EndBoundary.EXCLUSIVE) -> "Segments":
        if segment_size <= 0:
            raise InvalidRangeError("segment size must be greater than zero")
        self.validate(boundary)
        return Segments(self.start, self.stop_or(MAX_UINT64), segment_size, boundary)

    def __str__(self) -> str:
        stop = "" if self.stop is None else str(self.stop)
        return f"[{self.start}, {stop})"


class Segments(Sequence[BlockRange]):
    """
    Fixed-size, contiguous sub-ranges of [start, stop), computed on access
    so that an open-ended range does not have to be materialized. The last
    segment is truncated to stop.
    """

    def __init__(self, start: int, stop: int, size: int, boundary: EndBoundary = EndBoundary.EXCLUSIVE):
        self.start = start
        self.stop = stop
        self.size = size
        self.boundary = boundary
        span = stop - start if boundary is EndBoundary.EXCLUSIVE else stop - start + 1
        self._count = -(-span // size)

    def __len__(self) -> int:
        return self._count

    def __getitem__(self, i):
        if isinstance(i, slice):
            return [self[j] for j in range(*i.indices(self._count))]
        if i < 0:
            i += self._count
        if i < 0 or i >= self._count:
            raise IndexError("segment index out of range")

        seg_start = self.start + i * self.size
        if self.boundary is EndBoundary.EXCLUSIVE:
            return BlockRange(seg_start, min(seg_start + self.size, self.stop))
        return BlockRange(seg_start, min(seg_start + self.size - 1, self.stop))

    def __iter__(self) -> Iterator[BlockRange]:
        for i in range(self._count):
            yield self[i]


def parse_block_range(text: str) -> BlockRange:
    """
    "<start>:<stop>", "<start>:" (open), "<start>:+<count>" (stop relative
    to start). start may be negative, which leaves the range unresolved.
    """
    raw = text.strip()
    if ":" not in raw:
        raise InvalidRangeError(f"invalid block range {text!r}, expected '<start>:<stop>'")

    left, right = raw.split(":", 1)
    try:
        start = int(left)
    except ValueError:
        raise InvalidRangeError(f"invalid start block {left!r} in range {text!r}") from None

    right = right.strip()
    if not right:
        return BlockRange(start, None)

    relative = right.startswith("+")
    try:
        value = int(right[1:] if relative else right)
    except ValueError:
        raise InvalidRangeError(f"invalid stop block {right!r} in range {text!r}") from None

    if value < 0:
        raise InvalidRangeError(f"invalid stop block {right!r} in range {text!r}, cannot be negative")
    if relative:
        if start < 0:
            raise InvalidRangeError(f"range {text!r}: a relative stop needs a resolved start")
        return BlockRange(start, start + value)
    return BlockRange(start, value)


def walk_block_prefix(block_range: BlockRange, bundle_size: int) -> str:
    """
    Longest common prefix of the 10-digit names of the first and last bundle
    touching the range. Used to narrow the store listing.
    """
    if block_range.stop is None or bundle_size <= 0:
        return ""

    start = (block_range.start // bundle_size) * bundle_size
    end = ((block_range.stop - 1) // bundle_size) * bundle_size + bundle_size
    start_s = f"{start:010d}"
    end_s = f"{end:010d}"

    for i, (a, b) in enumerate(zip(start_s, end_s)):
        if a != b:
            return start_s[:i]
    return start_s
