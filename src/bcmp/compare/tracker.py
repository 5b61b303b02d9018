from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, List

from bcmp.compare.block_range import MAX_UINT64, EndBoundary, Segments
from bcmp.errors import OutOfOrderError


@dataclass
class SegmentReport:
    start: int
    stop: int
    blocks: int
    differences: int
    missing: int

    @property
    def status(self) -> str:
        if self.blocks == 0:
            return "empty"
        if self.differences == 0 and self.missing == 0:
            return "identical"
        if self.differences == 0:
            return "missing"
        return "different"

    def line(self) -> str:
        stop = str(self.stop) if self.stop != MAX_UINT64 else "∞"
        if self.status == "empty":
            return f"✖ No blocks were found at all for segment {self.start} - {stop}"
        if self.status == "identical":
            return f"✓ Segment {self.start} - {stop} has no differences ({self.blocks} blocks counted)"
        if self.status == "missing":
            return (
                f"✓~ Segment {self.start} - {stop} has no differences but does have "
                f"{self.missing} missing blocks ({self.blocks} blocks counted)"
            )
        return (
            f"✖ Segment {self.start} - {stop} has {self.differences} different blocks and "
            f"{self.missing} missing blocks ({self.blocks} blocks counted)"
        )


class SegmentTracker:
    """
    Folds per-block outcomes, fed in ascending block order, into one summary
    line per segment. A line is printed each time the stream leaves a segment
    and once more by the final flush().
    """

    def __init__(self, segments: Segments, out: Callable[[str], None] = print):
        if len(segments) == 0:
            raise ValueError("tracker: no segments to track")
        self.segments = segments
        self.out = out
        self.current_segment_idx = 0
        self.blocks_in_segment = 0
        self.differences_found = 0
        self.missing_blocks = 0
        self.total_blocks_counted = 0
        self.reports: List[SegmentReport] = []

    def process(self, block_num: int, is_different: bool, is_missing: bool) -> None:
        current = self.segments[self.current_segment_idx]
        if not current.contains(block_num, EndBoundary.EXCLUSIVE):
            if block_num < current.start:
                raise OutOfOrderError(
                    f"block {block_num} precedes current segment {current.start} - {current.stop}"
                )

            # linear scan; streams move segment by segment in practice
            idx = -1
            for i in range(self.current_segment_idx + 1, len(self.segments)):
                if self.segments[i].contains(block_num, EndBoundary.EXCLUSIVE):
                    idx = i
                    break
            if idx < 0:
                raise OutOfOrderError(f"block {block_num} is past the last segment")

            self.flush()
            self.current_segment_idx = idx
            self.total_blocks_counted += self.blocks_in_segment
            self.blocks_in_segment = 0
            self.differences_found = 0
            self.missing_blocks = 0

        self.blocks_in_segment += 1
        if is_missing:
            self.missing_blocks += 1
        elif is_different:
            self.differences_found += 1

    def flush(self) -> SegmentReport:
        seg = self.segments[self.current_segment_idx]
        report = SegmentReport(
            start=seg.start,
            stop=seg.stop_or(MAX_UINT64),
            blocks=self.blocks_in_segment,
            differences=self.differences_found,
            missing=self.missing_blocks,
        )
        self.reports.append(report)
        self.out(report.line())
        return report

    def finish(self) -> SegmentReport:
        """End of stream: report the last segment and fold its count in."""
        report = self.flush()
        self.total_blocks_counted += self.blocks_in_segment
        self.blocks_in_segment = 0
        return report
