from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Iterable, Optional

import zstandard as zstd

from bcmp.codec.message import Message
from bcmp.codec.schema import FieldSpec, MessageSchema, Schema


MAGIC = b"dbin"  # exactly 4 bytes
VERSION = 1
CONTENT_TYPE = "bst"
CONTENT_VERSION = "01"
HEADER_LEN = 4 + 1 + 3 + 2


# Envelope every bundle entry is stored in. The chain-specific block sits
# opaque in `payload` (an Any: type_url + value).
ENVELOPE = Schema(
    messages={
        "Block": MessageSchema("Block", [
            FieldSpec(1, "number", "uint64"),
            FieldSpec(2, "id", "string"),
            FieldSpec(3, "parent_id", "string"),
            FieldSpec(4, "timestamp_nanos", "int64"),
            FieldSpec(5, "lib_num", "uint64"),
            FieldSpec(10, "parent_num", "uint64"),
            FieldSpec(11, "payload", "message", message="Any"),
        ]),
        "Any": MessageSchema("Any", [
            FieldSpec(1, "type_url", "string"),
            FieldSpec(2, "value", "bytes"),
        ]),
    },
    root="Block",
    type_url="type.googleapis.com/sf.bstream.v1.Block",
)


@dataclass
class BundleRecord:
    number: int
    id: str
    payload_type_url: str
    payload_value: bytes
    parent_id: str = ""
    parent_num: int = 0
    lib_num: int = 0
    timestamp_nanos: int = 0

    @classmethod
    def from_bytes(cls, buf: bytes) -> "BundleRecord":
        env = Message.decode(ENVELOPE, buf)
        payload = env["payload"]
        return cls(
            number=env["number"],
            id=env["id"],
            payload_type_url=payload["type_url"] if payload is not None else "",
            payload_value=payload["value"] if payload is not None else b"",
            parent_id=env["parent_id"],
            parent_num=env["parent_num"],
            lib_num=env["lib_num"],
            timestamp_nanos=env["timestamp_nanos"],
        )

    def to_bytes(self) -> bytes:
        payload = Message.new(ENVELOPE, "Any", type_url=self.payload_type_url, value=self.payload_value)
        env = Message.new(
            ENVELOPE,
            number=self.number,
            id=self.id,
            parent_id=self.parent_id,
            parent_num=self.parent_num,
            lib_num=self.lib_num,
            timestamp_nanos=self.timestamp_nanos,
            payload=payload,
        )
        return env.encode()


def _read_exact(stream: BinaryIO, n: int) -> bytes:
    out = bytearray()
    while len(out) < n:
        chunk = stream.read(n - len(out))
        if not chunk:
            break
        out += chunk
    return bytes(out)


class DBinReader:
    """
    Bundle layout:
      [MAGIC 4B "dbin"][version u8][content_type 3B][content_version 2B]
      repeated: [len u32 big-endian][envelope bytes]
    """

    def __init__(self, stream: BinaryIO):
        self.stream = stream
        header = _read_exact(stream, HEADER_LEN)
        if len(header) < HEADER_LEN:
            raise ValueError("dbin: header truncated")
        if header[:4] != MAGIC:
            raise ValueError(f"dbin: bad magic {header[:4]!r}")
        if header[4] != VERSION:
            raise ValueError(f"dbin: unsupported version {header[4]}")
        self.content_type = header[5:8].decode("ascii", errors="replace")
        self.content_version = header[8:10].decode("ascii", errors="replace")

    def read(self) -> Optional[BundleRecord]:
        """Next record, or None at a clean end of stream."""
        prefix = _read_exact(self.stream, 4)
        if not prefix:
            return None
        if len(prefix) < 4:
            raise ValueError("dbin: length prefix truncated")

        n = int.from_bytes(prefix, "big", signed=False)
        body = _read_exact(self.stream, n)
        if len(body) != n:
            raise ValueError(f"dbin: record truncated ({len(body)} of {n} bytes)")
        return BundleRecord.from_bytes(body)


class DBinWriter:
    def __init__(self, stream: BinaryIO, content_type: str = CONTENT_TYPE, content_version: str = CONTENT_VERSION):
        if len(content_type) != 3 or len(content_version) != 2:
            raise ValueError("dbin: content type must be 3 chars and content version 2 chars")
        self.stream = stream
        stream.write(MAGIC + bytes([VERSION]) + content_type.encode("ascii") + content_version.encode("ascii"))

    def write(self, rec: BundleRecord) -> None:
        body = rec.to_bytes()
        self.stream.write(len(body).to_bytes(4, "big", signed=False))
        self.stream.write(body)


def write_bundle(path: str, records: Iterable[BundleRecord], compress: bool = False, level: int = 3) -> None:
    """Writes a whole bundle file; with compress, the file is one zstd frame."""
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    with p.open("wb") as f:
        if compress:
            cctx = zstd.ZstdCompressor(level=level)
            with cctx.stream_writer(f, closefd=False) as zf:
                w = DBinWriter(zf)
                for rec in records:
                    w.write(rec)
        else:
            w = DBinWriter(f)
            for rec in records:
                w.write(rec)
