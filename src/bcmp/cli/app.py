from __future__ import annotations

import argparse
import time
from typing import List, Optional

from bcmp.chain import load_chain
from bcmp.compare.block_range import parse_block_range
from bcmp.compare.runner import compare_stores
from bcmp.config import DEFAULT_BUNDLE_SIZE, DEFAULT_SEGMENT_SIZE, CompareConfig
from bcmp.errors import CompareError
from bcmp.store.local import open_store


COMPARE_BLOCKS_HELP = """\
Takes two stores of merged block bundles and a range written as
'<start>:<stop>' (stop exclusive). It prints the status of every segment
(100,000 blocks by default) as it moves forward and at the end. Segments
holding differences are reported with their counts, and every differing
block is listed as it is found.

With --diff, the differences of each block are printed as well.

examples:
  # run over a full range
  bcmp compare-blocks --schema acme.json reference_store/ current_store/ 0:16000000

  # run over a specific range, showing the differences
  bcmp compare-blocks --schema acme.json --diff reference_store/ current_store/ 100:200
"""


def cmd_compare_blocks(args: argparse.Namespace) -> int:
    config = CompareConfig(
        show_diff=args.diff,
        include_unknown_fields=args.include_unknown_fields,
        segment_size=args.segment_size,
        bundle_size=args.bundle_size,
        schema_path=args.schema,
    )

    try:
        block_range = parse_block_range(args.range)
        # range problems must surface before any store is touched
        block_range.split(config.segment_size)
        chain = load_chain(config.schema_path)
        reference = open_store(args.reference)
        current = open_store(args.current)
    except CompareError as e:
        raise SystemExit(f"compare-blocks: {e}")

    t0 = time.time()
    try:
        summary = compare_stores(reference, current, block_range, chain, config)
    except CompareError as e:
        raise SystemExit(f"compare-blocks: {e}")
    dt = time.time() - t0

    print("------------------------------")
    print("bundles   :", summary.bundles)
    print("blocks    :", summary.blocks)
    print("different :", summary.different)
    print("missing   :", summary.missing)
    print(f"elapsed   : {dt:.2f}s")
    print("------------------------------")
    if summary.different and not config.show_diff:
        print("Run again with --diff to display the differences of each block.")
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="bcmp", description="Block bundle comparison tools")
    sub = p.add_subparsers(dest="cmd", required=True)

    pc = sub.add_parser(
        "compare-blocks",
        help="Checks for any differences between two block stores over a range",
        description=COMPARE_BLOCKS_HELP,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    pc.add_argument("reference", help="Reference block store (directory or file:// URL)")
    pc.add_argument("current", help="Current block store (directory or file:// URL)")
    pc.add_argument("range", help="Block range '<start>:<stop>', '<start>:+<count>' or '<start>:'")
    pc.add_argument("--schema", required=True, help="JSON schema describing the chain's block message")
    pc.add_argument("--diff", action="store_true", help="Display the difference of each block with a difference")
    pc.add_argument(
        "--include-unknown-fields",
        action="store_true",
        help="Also compare the 'unknown fields' of the block messages. These would not generate "
             "any difference when decoded with the current schema.",
    )
    pc.add_argument("--segment-size", type=int, default=DEFAULT_SEGMENT_SIZE, help="Blocks per reported segment")
    pc.add_argument("--bundle-size", type=int, default=DEFAULT_BUNDLE_SIZE, help="Blocks per bundle file")
    pc.set_defaults(fn=cmd_compare_blocks)

    return p


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    return int(args.fn(args))


if __name__ == "__main__":
    raise SystemExit(main())
