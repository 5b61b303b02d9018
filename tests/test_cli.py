import json
from dataclasses import replace

import pytest

from bcmp.bench.datasets import toy_blocks, toy_chain, toy_schema_dict, write_toy_bundle
from bcmp.cli.app import main


CHAIN = toy_chain()


@pytest.fixture
def setup(tmp_path):
    schema = tmp_path / "acme.json"
    schema.write_text(json.dumps(toy_schema_dict()), encoding="utf-8")
    ref = tmp_path / "ref"
    cur = tmp_path / "cur"
    ref.mkdir()
    cur.mkdir()

    blocks = toy_blocks(CHAIN, 0, 3)
    m = blocks[1].message.copy()
    m["hash"] = "changed"
    write_toy_bundle(str(ref), "0000000000", CHAIN, blocks)
    write_toy_bundle(str(cur), "0000000000", CHAIN, [blocks[0], replace(blocks[1], message=m), blocks[2]])
    return str(schema), str(ref), str(cur)


def test_differences_do_not_fail_the_run(setup, capsys):
    schema, ref, cur = setup

    rc = main(["compare-blocks", "--schema", schema, "--diff", ref, cur, "0:3"])

    out = capsys.readouterr().out
    assert rc == 0
    assert "✖ Segment 0 - 3 has 1 different blocks and 0 missing blocks (3 blocks counted)" in out
    assert '@ ["payload","hash"]' in out
    assert "different : 1" in out


def test_identical_range(setup, capsys):
    schema, ref, cur = setup

    rc = main(["compare-blocks", "--schema", schema, ref, cur, "0:1"])

    assert rc == 0
    assert "✓ Segment 0 - 1 has no differences (1 blocks counted)" in capsys.readouterr().out


@pytest.mark.parametrize("rng,msg", [
    ("abc", "invalid block range"),
    ("-5:10", "fully resolved"),
    ("10:10", "start must be lower than stop"),
])
def test_bad_range_exits_before_io(setup, rng, msg):
    schema, ref, cur = setup

    with pytest.raises(SystemExit) as excinfo:
        main(["compare-blocks", "--schema", schema, ref, cur + "-missing", rng])

    assert msg in str(excinfo.value.code)


def test_zero_segment_size_exits(setup):
    schema, ref, cur = setup

    with pytest.raises(SystemExit) as excinfo:
        main(["compare-blocks", "--schema", schema, "--segment-size", "0", ref, cur, "0:3"])

    assert "segment size" in str(excinfo.value.code)


def test_missing_store_and_bundle_exit_nonzero(setup, tmp_path):
    schema, ref, cur = setup

    with pytest.raises(SystemExit) as excinfo:
        main(["compare-blocks", "--schema", schema, ref, str(tmp_path / "nowhere"), "0:3"])
    assert "is not a directory" in str(excinfo.value.code)

    empty = tmp_path / "empty"
    empty.mkdir()
    with pytest.raises(SystemExit) as excinfo:
        main(["compare-blocks", "--schema", schema, ref, str(empty), "0:3"])
    assert "not found" in str(excinfo.value.code)


def test_usage_errors():
    with pytest.raises(SystemExit) as excinfo:
        main(["compare-blocks"])
    assert excinfo.value.code == 2
