from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from bcmp.chain import Chain
from bcmp.compare.block_range import MAX_UINT64, BlockRange, EndBoundary, walk_block_prefix
from bcmp.compare.diff import compare
from bcmp.compare.fetch import WarnOnce, read_bundle
from bcmp.compare.tracker import SegmentReport, SegmentTracker
from bcmp.config import CompareConfig
from bcmp.errors import BundleReadError, CompareError, RunCancelled
from bcmp.store.local import LocalStore


EQUAL = "equal"
DIFFERENT = "different"
MISSING = "missing"


@dataclass
class Outcome:
    number: int
    id: str
    kind: str
    diffs: List[str] = field(default_factory=list)


@dataclass
class CompareSummary:
    bundles: int = 0
    blocks: int = 0
    different: int = 0
    missing: int = 0
    outcomes: List[Outcome] = field(default_factory=list)
    reports: List[SegmentReport] = field(default_factory=list)

    @property
    def identical(self) -> bool:
        return self.different == 0 and self.missing == 0


def compare_stores(
    reference: LocalStore,
    current: LocalStore,
    block_range: BlockRange,
    chain: Chain,
    config: Optional[CompareConfig] = None,
    out: Callable[[str], None] = print,
    cancel: Optional[threading.Event] = None,
    keep_outcomes: bool = False,
) -> CompareSummary:
    """
    Walks the reference store over block_range and compares every block of
    every bundle against the same bundle in the current store.

    Both sides of a bundle are read concurrently; comparison and reporting
    happen bundle after bundle in ascending block order. A failure reading
    either side stops the run with a BundleReadError carrying both errors.
    """
    config = config or CompareConfig()
    cancel = cancel or threading.Event()
    segments = block_range.split(config.segment_size, EndBoundary.EXCLUSIVE)
    stop_block = block_range.stop_or(MAX_UINT64)

    tracker = SegmentTracker(segments, out=out)
    summary = CompareSummary()
    warn_extra = WarnOnce()

    def fetch(store: LocalStore, filename: str, bundle_start: int):
        return read_bundle(
            store,
            filename,
            bundle_start,
            stop_block,
            chain.sanitize,
            warn_extra,
            chain.decode_block,
            cancel=cancel,
            out=out,
        )

    with ThreadPoolExecutor(max_workers=2, thread_name_prefix="bcmp-fetch") as pool:

        def visit(filename: str) -> bool:
            try:
                bundle_start = int(filename)
            except ValueError:
                raise CompareError(f"parsing filename {filename!r}: not a block number") from None

            if stop_block <= bundle_start:
                return False
            if not block_range.contains(bundle_start, EndBoundary.EXCLUSIVE):
                bundle_end = bundle_start + config.bundle_size
                if bundle_start < block_range.start < bundle_end:
                    out(
                        f"Skipping bundle {filename}: it starts before block #{block_range.start}, "
                        f"blocks {block_range.start} - {bundle_end - 1} will not be compared"
                    )
                return True

            fut_ref = pool.submit(fetch, reference, filename, bundle_start)
            fut_cur = pool.submit(fetch, current, filename, bundle_start)

            errors: List[BaseException] = []
            results = []
            for fut in (fut_ref, fut_cur):
                try:
                    results.append(fut.result())
                except Exception as e:
                    errors.append(e)
            for e in errors:
                if isinstance(e, RunCancelled):
                    raise e
            if errors:
                raise BundleReadError(errors)

            (ref_ids, ref_blocks), (_, cur_blocks) = results
            summary.bundles += 1

            for block_id in ref_ids:
                ref_block = ref_blocks[block_id]
                cur_block = cur_blocks.get(block_id)

                if cur_block is None:
                    outcome = Outcome(ref_block.number, block_id, MISSING)
                else:
                    is_equal, differences = compare(ref_block, cur_block, config.include_unknown_fields)
                    if is_equal:
                        outcome = Outcome(ref_block.number, block_id, EQUAL)
                    else:
                        outcome = Outcome(ref_block.number, block_id, DIFFERENT, differences)
                        out(f"- Block {ref_block.ref()} is different")
                        if config.show_diff:
                            for diff in differences:
                                out(f"  ·  {diff}")

                _record(summary, outcome, keep_outcomes)
                tracker.process(outcome.number, outcome.kind == DIFFERENT, outcome.kind == MISSING)

            return True

        try:
            reference.walk(walk_block_prefix(block_range, config.bundle_size), visit)
        except KeyboardInterrupt:
            # in-flight fetches notice the event before their next read
            cancel.set()
            raise RunCancelled("run interrupted") from None

    tracker.finish()
    summary.reports = list(tracker.reports)
    return summary


def _record(summary: CompareSummary, outcome: Outcome, keep: bool) -> None:
    summary.blocks += 1
    if outcome.kind == DIFFERENT:
        summary.different += 1
    elif outcome.kind == MISSING:
        summary.missing += 1
    if keep:
        summary.outcomes.append(outcome)
