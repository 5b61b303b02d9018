import pytest

from bcmp.compare.block_range import BlockRange
from bcmp.compare.tracker import SegmentReport, SegmentTracker
from bcmp.errors import OutOfOrderError


def test_tracker_250k_blocks_three_flushes():
    lines = []
    t = SegmentTracker(BlockRange(0, 300_000).split(100_000), out=lines.append)

    for n in range(250_000):
        t.process(n, is_different=(n % 1000 == 0), is_missing=False)
    t.finish()

    assert len(lines) == 3
    assert len(t.reports) == 3
    assert sum(r.blocks for r in t.reports) == 250_000
    assert t.total_blocks_counted == 250_000
    assert [r.differences for r in t.reports] == [100, 100, 50]
    assert lines[2] == "✖ Segment 200000 - 300000 has 50 different blocks and 0 missing blocks (50000 blocks counted)"


def test_report_lines():
    assert SegmentReport(0, 100, 0, 0, 0).line() == "✖ No blocks were found at all for segment 0 - 100"
    assert SegmentReport(0, 100, 10, 0, 0).line() == "✓ Segment 0 - 100 has no differences (10 blocks counted)"
    assert SegmentReport(0, 100, 10, 0, 2).line() == (
        "✓~ Segment 0 - 100 has no differences but does have 2 missing blocks (10 blocks counted)"
    )
    assert SegmentReport(0, 100, 10, 3, 2).line() == (
        "✖ Segment 0 - 100 has 3 different blocks and 2 missing blocks (10 blocks counted)"
    )


def test_missing_takes_precedence_over_different():
    t = SegmentTracker(BlockRange(0, 10).split(10), out=lambda _: None)
    t.process(1, is_different=True, is_missing=True)
    report = t.finish()

    assert (report.missing, report.differences, report.blocks) == (1, 0, 1)


def test_empty_stream_reports_no_blocks():
    lines = []
    t = SegmentTracker(BlockRange(0, 100).split(100), out=lines.append)
    t.finish()
    assert lines == ["✖ No blocks were found at all for segment 0 - 100"]


def test_jump_over_segments_reports_only_visited():
    lines = []
    t = SegmentTracker(BlockRange(0, 1000).split(100), out=lines.append)
    t.process(10, False, False)
    t.process(350, False, True)
    t.finish()

    assert [(r.start, r.blocks) for r in t.reports] == [(0, 1), (300, 1)]
    assert t.current_segment_idx == 3
    assert lines[1].startswith("✓~ Segment 300 - 400")


def test_backward_jump_rejected():
    t = SegmentTracker(BlockRange(0, 1000).split(100), out=lambda _: None)
    t.process(150, False, False)
    with pytest.raises(OutOfOrderError):
        t.process(50, False, False)


def test_block_past_last_segment_rejected():
    t = SegmentTracker(BlockRange(0, 200).split(100), out=lambda _: None)
    t.process(0, False, False)
    with pytest.raises(OutOfOrderError):
        t.process(250, False, False)
