from __future__ import annotations

import struct
from typing import Dict, Iterator, Tuple

from bcmp.mem.varint import decode_uvarint, encode_uvarint


# ---------------------------------------
# Protobuf wire types
# ---------------------------------------
# 0 = VARINT, 1 = I64, 2 = LEN, 3 = SGROUP, 4 = EGROUP, 5 = I32
VARINT = 0
I64 = 1
LEN = 2
SGROUP = 3
EGROUP = 4
I32 = 5

MAX_FIELD_NUMBER = (1 << 29) - 1


def encode_tag(field_number: int, wire_type: int) -> bytes:
    if field_number < 1 or field_number > MAX_FIELD_NUMBER:
        raise ValueError(f"wire: invalid field number {field_number}")
    return encode_uvarint((field_number << 3) | wire_type)


def decode_tag(buf: bytes, off: int) -> Tuple[int, int, int]:
    """
    Returns (field_number, wire_type, new_offset)
    """
    key, off = decode_uvarint(buf, off)
    field_number = key >> 3
    wire_type = key & 0x7
    if field_number < 1 or field_number > MAX_FIELD_NUMBER:
        raise ValueError(f"wire: invalid field number {field_number}")
    return field_number, wire_type, off


def _skip_value(buf: bytes, off: int, field_number: int, wire_type: int, depth: int = 0) -> int:
    if wire_type == VARINT:
        _, off = decode_uvarint(buf, off)
        return off
    if wire_type == I64:
        if off + 8 > len(buf):
            raise ValueError("wire: fixed64 truncated")
        return off + 8
    if wire_type == I32:
        if off + 4 > len(buf):
            raise ValueError("wire: fixed32 truncated")
        return off + 4
    if wire_type == LEN:
        n, off = decode_uvarint(buf, off)
        if off + n > len(buf):
            raise ValueError("wire: length-delimited field truncated")
        return off + n
    if wire_type == SGROUP:
        if depth > 64:
            raise ValueError("wire: groups nested too deeply")
        while True:
            if off >= len(buf):
                raise ValueError("wire: group not terminated")
            fn, wt, off = decode_tag(buf, off)
            if wt == EGROUP:
                if fn != field_number:
                    raise ValueError(f"wire: mismatched end group {fn} != {field_number}")
                return off
            off = _skip_value(buf, off, fn, wt, depth + 1)
    raise ValueError(f"wire: unexpected wire type {wire_type}")


def consume_field(buf: bytes, off: int = 0) -> Tuple[int, int, int]:
    """
    Reads one complete field (tag + value) starting at `off`.
    Returns (field_number, wire_type, end_offset); buf[off:end_offset] is the
    raw field, tag included.
    """
    field_number, wire_type, pos = decode_tag(buf, off)
    if wire_type == EGROUP:
        raise ValueError(f"wire: unexpected end group for field {field_number}")
    end = _skip_value(buf, pos, field_number, wire_type)
    return field_number, wire_type, end


def iter_fields(buf: bytes) -> Iterator[Tuple[int, int, bytes, bytes]]:
    """
    Yields (field_number, wire_type, value_bytes, raw_field_bytes) for every
    field of a serialized message, in wire order.

    value_bytes is the payload without tag: the varint bytes, the fixed
    width bytes, or the content of a length-delimited field.
    """
    off = 0
    while off < len(buf):
        start = off
        field_number, wire_type, pos = decode_tag(buf, off)
        if wire_type == EGROUP:
            raise ValueError(f"wire: unexpected end group for field {field_number}")
        end = _skip_value(buf, pos, field_number, wire_type)
        if wire_type == LEN:
            _, data_start = decode_uvarint(buf, pos)
            value = buf[data_start:end]
        else:
            value = buf[pos:end]
        yield field_number, wire_type, value, buf[start:end]
        off = end


def split_raw_fields(raw: bytes) -> Dict[int, bytes]:
    """
    Unknown-field bag -> {field_number: raw bytes}. A field number seen more
    than once has its occurrences concatenated in encounter order. Dict
    insertion order is the order of first appearance.
    """
    out: Dict[int, bytearray] = {}
    off = 0
    while off < len(raw):
        field_number, _, end = consume_field(raw, off)
        out.setdefault(field_number, bytearray()).extend(raw[off:end])
        off = end
    return {k: bytes(v) for k, v in out.items()}


# ---------------------------------------
# Writers
# ---------------------------------------
def field_varint(field_number: int, value: int) -> bytes:
    return encode_tag(field_number, VARINT) + encode_uvarint(value)


def field_bytes(field_number: int, value: bytes) -> bytes:
    return encode_tag(field_number, LEN) + encode_uvarint(len(value)) + value


def field_fixed32(field_number: int, value: int) -> bytes:
    return encode_tag(field_number, I32) + struct.pack("<I", value & 0xFFFFFFFF)
