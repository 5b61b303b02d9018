import threading
from dataclasses import replace

import pytest

from bcmp.bench.datasets import toy_block, toy_blocks, toy_chain, write_toy_bundle, write_toy_store
from bcmp.codec.message import Message
from bcmp.codec.wire import field_varint
from bcmp.compare.block_range import BlockRange
from bcmp.compare.runner import DIFFERENT, EQUAL, MISSING, compare_stores
from bcmp.config import CompareConfig
from bcmp.errors import BundleReadError, RunCancelled
from bcmp.store.local import LocalStore


CHAIN = toy_chain()


def _stores(tmp_path):
    ref = tmp_path / "reference"
    cur = tmp_path / "current"
    ref.mkdir()
    cur.mkdir()
    return ref, cur


def _changed(block):
    m = block.message.copy()
    m["header"]["gas_used"] = m["header"]["gas_used"] + 1
    return replace(block, message=m)


def test_equal_missing_different_scenario(tmp_path):
    ref, cur = _stores(tmp_path)
    a, b, c = toy_blocks(CHAIN, 0, 3)
    write_toy_bundle(str(ref), "0", CHAIN, [a, b, c])
    write_toy_bundle(str(cur), "0", CHAIN, [a, _changed(c)])
    lines = []

    summary = compare_stores(
        LocalStore(str(ref)),
        LocalStore(str(cur)),
        BlockRange(0, 3),
        CHAIN,
        CompareConfig(show_diff=True),
        out=lines.append,
        keep_outcomes=True,
    )

    assert [(o.id, o.kind) for o in summary.outcomes] == [(a.id, EQUAL), (b.id, MISSING), (c.id, DIFFERENT)]
    assert (summary.blocks, summary.different, summary.missing) == (3, 1, 1)
    assert not summary.identical
    assert len(summary.reports) == 1
    assert lines[-1] == "✖ Segment 0 - 3 has 1 different blocks and 1 missing blocks (3 blocks counted)"
    assert f"- Block #2 ({c.id}) is different" in lines
    assert any(line.startswith('  ·  @ ["payload","header","gas_used"]') for line in lines)


def test_diff_lines_hidden_without_show_diff(tmp_path):
    ref, cur = _stores(tmp_path)
    blocks = toy_blocks(CHAIN, 0, 2)
    write_toy_bundle(str(ref), "0000000000", CHAIN, blocks)
    write_toy_bundle(str(cur), "0000000000", CHAIN, [blocks[0], _changed(blocks[1])])
    lines = []

    compare_stores(LocalStore(str(ref)), LocalStore(str(cur)), BlockRange(0, 2), CHAIN, out=lines.append)

    assert f"- Block #1 ({blocks[1].id}) is different" in lines
    assert not any(line.startswith("  ·  ") for line in lines)


def test_identical_stores_over_several_segments(tmp_path):
    ref, cur = _stores(tmp_path)
    write_toy_store(str(ref), CHAIN, 0, 500)
    write_toy_store(str(cur), CHAIN, 0, 500, compress=True)
    lines = []

    summary = compare_stores(
        LocalStore(str(ref)),
        LocalStore(str(cur)),
        BlockRange(0, 500),
        CHAIN,
        CompareConfig(segment_size=200),
        out=lines.append,
    )

    assert summary.identical
    assert summary.bundles == 5
    assert [(r.start, r.stop, r.blocks) for r in summary.reports] == [(0, 200, 200), (200, 400, 200), (400, 500, 100)]
    assert lines == [
        "✓ Segment 0 - 200 has no differences (200 blocks counted)",
        "✓ Segment 200 - 400 has no differences (200 blocks counted)",
        "✓ Segment 400 - 500 has no differences (100 blocks counted)",
    ]


def test_range_bounds_limit_bundles_and_blocks(tmp_path):
    ref, cur = _stores(tmp_path)
    write_toy_store(str(ref), CHAIN, 0, 500)
    write_toy_store(str(cur), CHAIN, 0, 500)

    summary = compare_stores(LocalStore(str(ref)), LocalStore(str(cur)), BlockRange(0, 250), CHAIN, out=lambda _: None)
    assert (summary.bundles, summary.blocks) == (3, 250)

    summary = compare_stores(LocalStore(str(ref)), LocalStore(str(cur)), BlockRange(100, 300), CHAIN, out=lambda _: None)
    assert (summary.bundles, summary.blocks) == (2, 200)


def test_bundle_straddling_range_start_is_announced(tmp_path):
    ref, cur = _stores(tmp_path)
    write_toy_store(str(ref), CHAIN, 0, 300)
    write_toy_store(str(cur), CHAIN, 0, 300)
    lines = []

    summary = compare_stores(LocalStore(str(ref)), LocalStore(str(cur)), BlockRange(150, 300), CHAIN, out=lines.append)

    assert (summary.bundles, summary.blocks) == (1, 100)
    assert lines[0] == "Skipping bundle 0000000100: it starts before block #150, blocks 150 - 199 will not be compared"
    assert sum(line.startswith("Skipping bundle") for line in lines) == 1


def test_sanitized_fields_do_not_count(tmp_path):
    ref, cur = _stores(tmp_path)
    blocks = toy_blocks(CHAIN, 0, 3)
    other = []
    for b in blocks:
        m = b.message.copy()
        m["header"]["produced_at"] = 1
        other.append(replace(b, message=m))
    write_toy_bundle(str(ref), "0000000000", CHAIN, blocks)
    write_toy_bundle(str(cur), "0000000000", CHAIN, other)

    summary = compare_stores(LocalStore(str(ref)), LocalStore(str(cur)), BlockRange(0, 3), CHAIN, out=lambda _: None)

    assert summary.identical


def test_unknown_fields_only_count_when_included(tmp_path):
    ref, cur = _stores(tmp_path)
    b = toy_block(CHAIN, 0)
    extra = replace(b, message=Message.decode(CHAIN.schema, b.message.encode() + field_varint(77, 1)))
    write_toy_bundle(str(ref), "0000000000", CHAIN, [b])
    write_toy_bundle(str(cur), "0000000000", CHAIN, [extra])
    stores = (LocalStore(str(ref)), LocalStore(str(cur)))

    summary = compare_stores(*stores, BlockRange(0, 1), CHAIN, out=lambda _: None)
    assert summary.identical

    lines = []
    summary = compare_stores(
        *stores, BlockRange(0, 1), CHAIN, CompareConfig(show_diff=True, include_unknown_fields=True), out=lines.append
    )
    assert summary.different == 1
    assert any("current has unknown field 77" in line for line in lines)


def test_both_fetch_errors_are_aggregated(tmp_path):
    ref, cur = _stores(tmp_path)
    (ref / "0000000000.dbin").write_bytes(b"garbage!garbage!")

    with pytest.raises(BundleReadError) as excinfo:
        compare_stores(LocalStore(str(ref)), LocalStore(str(cur)), BlockRange(0, 100), CHAIN, out=lambda _: None)

    assert len(excinfo.value.errors) == 2
    assert "creating block reader" in str(excinfo.value)
    assert "not found" in str(excinfo.value)


def test_corrupt_compressed_bundle_keeps_the_other_error(tmp_path):
    ref, cur = _stores(tmp_path)
    (ref / "0000000000.dbin.zst").write_bytes(b"garbage!garbage!")

    with pytest.raises(BundleReadError) as excinfo:
        compare_stores(LocalStore(str(ref)), LocalStore(str(cur)), BlockRange(0, 100), CHAIN, out=lambda _: None)

    assert len(excinfo.value.errors) == 2
    assert "creating block reader" in str(excinfo.value.errors[0])
    assert "not found" in str(excinfo.value.errors[1])


def test_cancelled_run_raises(tmp_path):
    ref, cur = _stores(tmp_path)
    write_toy_store(str(ref), CHAIN, 0, 100)
    write_toy_store(str(cur), CHAIN, 0, 100)
    cancel = threading.Event()
    cancel.set()

    with pytest.raises(RunCancelled):
        compare_stores(
            LocalStore(str(ref)), LocalStore(str(cur)), BlockRange(0, 100), CHAIN, out=lambda _: None, cancel=cancel
        )


def test_no_bundles_in_range(tmp_path):
    ref, cur = _stores(tmp_path)
    lines = []

    summary = compare_stores(LocalStore(str(ref)), LocalStore(str(cur)), BlockRange(0, 100), CHAIN, out=lines.append)

    assert summary.blocks == 0
    assert lines == ["✖ No blocks were found at all for segment 0 - 100"]
