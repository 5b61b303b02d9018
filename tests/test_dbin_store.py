import pytest

from bcmp.codec.dbin import BundleRecord, DBinReader, write_bundle
from bcmp.errors import SourceOpenError
from bcmp.store.local import LocalStore, open_store


def _records(n, start=0):
    return [
        BundleRecord(
            number=i,
            id=f"id{i}",
            payload_type_url="type.googleapis.com/t",
            payload_value=b"\x08" + bytes([i]),
            parent_id=f"id{i - 1}",
            parent_num=max(i - 1, 0),
        )
        for i in range(start, start + n)
    ]


def _touch_bundle(root, name, n=1, compress=False):
    ext = ".dbin.zst" if compress else ".dbin"
    write_bundle(str(root / (name + ext)), _records(n), compress=compress)


def _read_all(reader):
    out = []
    rec = reader.read()
    while rec is not None:
        out.append(rec)
        rec = reader.read()
    return out


def test_bundle_roundtrip(tmp_path):
    recs = _records(3)
    p = tmp_path / "0000000000.dbin"
    write_bundle(str(p), recs)

    with p.open("rb") as f:
        reader = DBinReader(f)
        got = _read_all(reader)

    assert got == recs
    assert reader.content_type == "bst"


def test_zstd_bundle_through_store(tmp_path):
    recs = _records(5)
    write_bundle(str(tmp_path / "0000000000.dbin.zst"), recs, compress=True)

    store = LocalStore(str(tmp_path))
    with store.open_object("0000000000") as f:
        got = _read_all(DBinReader(f))

    assert got == recs


def test_truncated_record_and_bad_magic(tmp_path):
    p = tmp_path / "0000000000.dbin"
    write_bundle(str(p), _records(2))
    p.write_bytes(p.read_bytes()[:-1])

    with p.open("rb") as f:
        reader = DBinReader(f)
        assert reader.read() is not None
        with pytest.raises(ValueError):
            reader.read()

    bad = tmp_path / "bad.dbin"
    bad.write_bytes(b"nope-not-a-bundle")
    with bad.open("rb") as f:
        with pytest.raises(ValueError):
            DBinReader(f)


def test_walk_lists_in_block_order_and_stops(tmp_path):
    _touch_bundle(tmp_path, "0000000200")
    _touch_bundle(tmp_path, "0000000000")
    _touch_bundle(tmp_path, "0000000100", compress=True)
    (tmp_path / "notes.txt").write_text("ignored")
    store = LocalStore(str(tmp_path))

    seen = []
    store.walk("", lambda name: seen.append(name) or True)
    assert seen == ["0000000000", "0000000100", "0000000200"]

    seen = []
    store.walk("", lambda name: seen.append(name) or name != "0000000100")
    assert seen == ["0000000000", "0000000100"]


def test_walk_prefix_matches_unpadded_names(tmp_path):
    for name in ("0", "20", "100"):
        _touch_bundle(tmp_path, name)
    store = LocalStore(str(tmp_path))

    seen = []
    store.walk("00000000", lambda name: seen.append(name) or True)
    assert seen == ["0", "20", "100"]

    seen = []
    store.walk("000000010", lambda name: seen.append(name) or True)
    assert seen == ["100"]


def test_store_errors(tmp_path):
    with pytest.raises(SourceOpenError):
        LocalStore(str(tmp_path / "missing"))
    with pytest.raises(SourceOpenError):
        open_store("s3://bucket/blocks")
    with pytest.raises(SourceOpenError):
        LocalStore(str(tmp_path)).open_object("0000000000")

    store = open_store("file://" + str(tmp_path))
    assert store.object_url("0000000100").startswith("file://")
    assert store.object_url("0000000100").endswith("0000000100")
