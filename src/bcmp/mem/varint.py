from typing import Tuple

MASK64 = (1 << 64) - 1


def encode_uvarint(n: int) -> bytes:
    """
    Unsigned varint (LEB128 style), as used by the protobuf wire format.
    Negative int64 values must be masked to 64 bits by the caller.
    """
    if n < 0:
        raise ValueError("uvarint cannot be negative")

    out = bytearray()
    while True:
        b = n & 0x7F
        n >>= 7
        if n:
            out.append(b | 0x80)
        else:
            out.append(b)
            break
    return bytes(out)


def decode_uvarint(data: bytes, offset: int = 0) -> Tuple[int, int]:
    """
    Returns (value, new_offset)
    """
    shift = 0
    result = 0
    i = offset

    while True:
        if i >= len(data):
            raise ValueError("uvarint truncated")

        b = data[i]
        i += 1

        result |= (b & 0x7F) << shift

        if (b & 0x80) == 0:
            break

        shift += 7
        if shift > 63:
            raise ValueError("uvarint too large")

    return result & MASK64, i


def zigzag_encode(n: int) -> int:
    # signed -> unsigned
    return ((n << 1) ^ (n >> 63)) & MASK64


def zigzag_decode(z: int) -> int:
    # unsigned -> signed
    return (z >> 1) ^ -(z & 1)


def to_signed(n: int, bits: int = 64) -> int:
    n &= (1 << bits) - 1
    if n >= 1 << (bits - 1):
        n -= 1 << bits
    return n
