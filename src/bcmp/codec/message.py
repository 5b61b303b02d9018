from __future__ import annotations

import copy
import struct
from typing import Any, Dict, Iterator, List, Optional, Tuple

from bcmp.codec.schema import (
    I64_KINDS,
    VARINT_KINDS,
    FieldSpec,
    MessageSchema,
    Schema,
    is_packable,
    wire_type_for,
)
from bcmp.codec.wire import LEN, encode_tag, field_bytes, iter_fields
from bcmp.mem.varint import (
    MASK64,
    decode_uvarint,
    encode_uvarint,
    to_signed,
    zigzag_decode,
    zigzag_encode,
)


UNKNOWN_KEY = "?unknown"

_FIXED_FORMATS = {
    "fixed64": "<Q",
    "sfixed64": "<q",
    "double": "<d",
    "fixed32": "<I",
    "sfixed32": "<i",
    "float": "<f",
}


# ---------------------------------------
# Scalars
# ---------------------------------------
def _default_for(kind: str) -> Any:
    if kind == "bool":
        return False
    if kind in ("double", "float"):
        return 0.0
    if kind == "string":
        return ""
    if kind == "bytes":
        return b""
    return 0


def _from_varint(kind: str, v: int) -> Any:
    if kind == "uint64":
        return v
    if kind == "uint32":
        return v & 0xFFFFFFFF
    if kind == "int64":
        return to_signed(v, 64)
    if kind in ("int32", "enum"):
        return to_signed(v, 32)
    if kind == "sint64":
        return zigzag_decode(v)
    if kind == "sint32":
        return to_signed(zigzag_decode(v & 0xFFFFFFFF), 32)
    if kind == "bool":
        return v != 0
    raise ValueError(f"message: {kind} is not a varint kind")


def _decode_scalar(kind: str, value: bytes) -> Any:
    if kind in VARINT_KINDS:
        v, _ = decode_uvarint(value, 0)
        return _from_varint(kind, v)
    if kind in _FIXED_FORMATS:
        return struct.unpack(_FIXED_FORMATS[kind], value)[0]
    if kind == "string":
        try:
            return bytes(value).decode("utf-8")
        except UnicodeDecodeError as e:
            raise ValueError(f"message: invalid utf-8 in string field: {e}") from e
    if kind == "bytes":
        return bytes(value)
    raise ValueError(f"message: {kind} is not a scalar kind")


def _decode_packed(kind: str, data: bytes) -> List[Any]:
    out: List[Any] = []
    if kind in VARINT_KINDS:
        off = 0
        while off < len(data):
            v, off = decode_uvarint(data, off)
            out.append(_from_varint(kind, v))
        return out

    width = 8 if kind in I64_KINDS else 4
    if len(data) % width:
        raise ValueError(f"message: packed {kind} length {len(data)} is not a multiple of {width}")
    fmt = _FIXED_FORMATS[kind]
    for i in range(0, len(data), width):
        out.append(struct.unpack(fmt, data[i:i + width])[0])
    return out


def _encode_scalar(kind: str, value: Any) -> bytes:
    if kind in ("uint64", "uint32"):
        return encode_uvarint(int(value))
    if kind in ("int64", "int32", "enum"):
        return encode_uvarint(int(value) & MASK64)
    if kind in ("sint64", "sint32"):
        return encode_uvarint(zigzag_encode(int(value)))
    if kind == "bool":
        return encode_uvarint(1 if value else 0)
    if kind in _FIXED_FORMATS:
        return struct.pack(_FIXED_FORMATS[kind], value)
    if kind == "string":
        return value.encode("utf-8")
    if kind == "bytes":
        return bytes(value)
    raise ValueError(f"message: {kind} is not a scalar kind")


def _tree_value(kind: str, value: Any) -> Any:
    if kind == "bytes":
        return value.hex()
    return value


# ---------------------------------------
# Message
# ---------------------------------------
class Message:
    """
    A decoded instance of a schema message type.

    Known fields live in `values` keyed by field name (repeated -> list,
    map -> dict, message -> Message). Fields the schema does not know are
    kept verbatim in `unknown`, tag bytes included, in wire order.
    """

    def __init__(
        self,
        types: Schema,
        schema: MessageSchema,
        values: Optional[Dict[str, Any]] = None,
        unknown: bytes = b"",
        valid: bool = True,
    ):
        self.types = types
        self.schema = schema
        self.values: Dict[str, Any] = values if values is not None else {}
        self.unknown = bytes(unknown)
        self._valid = valid

    @classmethod
    def invalid(cls, types: Schema, schema: MessageSchema) -> "Message":
        return cls(types, schema, valid=False)

    @classmethod
    def new(cls, types: Schema, type_name: Optional[str] = None, **values: Any) -> "Message":
        schema = types.message(type_name or types.root)
        for name in values:
            if name not in schema.by_name:
                raise ValueError(f"message: {schema.name} has no field {name!r}")
        return cls(types, schema, dict(values))

    @property
    def type_name(self) -> str:
        return self.schema.name

    def is_valid(self) -> bool:
        return self._valid

    def __getitem__(self, name: str) -> Any:
        f = self.schema.by_name[name]
        if name in self.values:
            return self.values[name]
        if f.repeated:
            return []
        if f.kind == "map":
            return {}
        if f.kind == "message":
            return None
        return _default_for(f.kind)

    def __setitem__(self, name: str, value: Any) -> None:
        if name not in self.schema.by_name:
            raise KeyError(f"{self.schema.name} has no field {name!r}")
        self.values[name] = value

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Message):
            return NotImplemented
        if self.type_name != other.type_name or self._valid != other._valid:
            return False
        return self.to_tree(include_unknown=True) == other.to_tree(include_unknown=True)

    def __repr__(self) -> str:
        return f"Message({self.type_name}, {self.to_tree(include_unknown=True)!r})"

    def copy(self) -> "Message":
        return copy.deepcopy(self)

    def __deepcopy__(self, memo: Dict[int, Any]) -> "Message":
        # schemas are shared, only values are copied
        return Message(self.types, self.schema, copy.deepcopy(self.values, memo), self.unknown, self._valid)

    # ---------------------------------------
    # decode
    # ---------------------------------------
    @classmethod
    def decode(cls, types: Schema, buf: bytes, type_name: Optional[str] = None) -> "Message":
        schema = types.message(type_name or types.root)
        msg = cls(types, schema)
        unknown = bytearray()

        for number, wire_type, value, raw in iter_fields(buf):
            f = schema.by_number.get(number)
            if f is None or not msg._decode_field(f, wire_type, value):
                unknown += raw

        msg.unknown = bytes(unknown)
        return msg

    def _decode_field(self, f: FieldSpec, wire_type: int, value: bytes) -> bool:
        """False when the wire type does not fit the field, it then stays unknown."""
        if f.kind == "map":
            if wire_type != LEN:
                return False
            k, v = self._decode_map_entry(f, value)
            self.values.setdefault(f.name, {})[k] = v
            return True

        if f.kind == "message":
            if wire_type != LEN:
                return False
            sub = Message.decode(self.types, value, f.message)
            if f.repeated:
                self.values.setdefault(f.name, []).append(sub)
            elif f.name in self.values:
                self.values[f.name].merge(sub)
            else:
                self.values[f.name] = sub
            return True

        if wire_type == wire_type_for(f.kind):
            v = _decode_scalar(f.kind, value)
            if f.repeated:
                self.values.setdefault(f.name, []).append(v)
            else:
                self.values[f.name] = v
            return True

        if f.repeated and wire_type == LEN and is_packable(f.kind):
            self.values.setdefault(f.name, []).extend(_decode_packed(f.kind, value))
            return True

        return False

    def _decode_map_entry(self, f: FieldSpec, buf: bytes) -> Tuple[Any, Any]:
        key = _default_for(f.key_kind)
        value: Any = None if f.value_kind == "message" else _default_for(f.value_kind)
        for number, wire_type, raw_value, _ in iter_fields(buf):
            if number == 1 and wire_type == wire_type_for(f.key_kind):
                key = _decode_scalar(f.key_kind, raw_value)
            elif number == 2 and f.value_kind == "message" and wire_type == LEN:
                value = Message.decode(self.types, raw_value, f.message)
            elif number == 2 and f.value_kind != "message" and wire_type == wire_type_for(f.value_kind):
                value = _decode_scalar(f.value_kind, raw_value)
        if value is None:
            value = Message(self.types, self.types.message(f.message))
        return key, value

    def merge(self, other: "Message") -> None:
        """Protobuf merge semantics for a singular message field seen twice."""
        for name, value in other.values.items():
            f = self.schema.by_name[name]
            if f.repeated:
                self.values.setdefault(name, []).extend(value)
            elif f.kind == "map":
                self.values.setdefault(name, {}).update(value)
            elif f.kind == "message" and name in self.values:
                self.values[name].merge(value)
            else:
                self.values[name] = value
        self.unknown += other.unknown

    # ---------------------------------------
    # encode
    # ---------------------------------------
    def encode(self) -> bytes:
        out = bytearray()
        for f in sorted(self.schema.fields, key=lambda x: x.number):
            if f.name not in self.values:
                continue
            out += self._encode_field(f, self.values[f.name])
        out += self.unknown
        return bytes(out)

    def _encode_field(self, f: FieldSpec, value: Any) -> bytes:
        if f.kind == "map":
            out = bytearray()
            for k, v in value.items():
                entry = encode_tag(1, wire_type_for(f.key_kind)) + _len_prefixed_if(f.key_kind, _encode_scalar(f.key_kind, k))
                if f.value_kind == "message":
                    entry += field_bytes(2, v.encode())
                else:
                    entry += encode_tag(2, wire_type_for(f.value_kind)) + _len_prefixed_if(f.value_kind, _encode_scalar(f.value_kind, v))
                out += field_bytes(f.number, entry)
            return bytes(out)

        if f.kind == "message":
            items = value if f.repeated else [value]
            return b"".join(field_bytes(f.number, m.encode()) for m in items)

        if f.repeated:
            if not value:
                return b""
            if is_packable(f.kind):
                return field_bytes(f.number, b"".join(_encode_scalar(f.kind, v) for v in value))
            return b"".join(field_bytes(f.number, _encode_scalar(f.kind, v)) for v in value)

        if value == _default_for(f.kind):
            return b""
        return encode_tag(f.number, f.wire_type) + _len_prefixed_if(f.kind, _encode_scalar(f.kind, value))

    # ---------------------------------------
    # structural views
    # ---------------------------------------
    def to_tree(self, include_unknown: bool = False) -> Dict[str, Any]:
        """
        JSON-like view of the known fields: default scalars and empty
        containers are left out, bytes become hex, map keys become strings.
        With include_unknown, each message's non-empty unknown bag shows up
        under the "?unknown" key.
        """
        out: Dict[str, Any] = {}
        for name, value in self.values.items():
            f = self.schema.by_name[name]
            if f.kind == "map":
                if value:
                    out[name] = {
                        str(k): (v.to_tree(include_unknown) if isinstance(v, Message) else _tree_value(f.value_kind, v))
                        for k, v in value.items()
                    }
            elif f.kind == "message":
                if f.repeated:
                    if value:
                        out[name] = [m.to_tree(include_unknown) for m in value]
                elif value is not None:
                    out[name] = value.to_tree(include_unknown)
            elif f.repeated:
                if value:
                    out[name] = [_tree_value(f.kind, v) for v in value]
            elif value != _default_for(f.kind):
                out[name] = _tree_value(f.kind, value)
        if include_unknown and self.unknown:
            out[UNKNOWN_KEY] = self.unknown.hex()
        return out

    def strip_unknown(self) -> "Message":
        """Copy with every unknown-field bag emptied, nested messages included."""
        m = self.copy()
        for sub in m.iter_messages():
            sub.unknown = b""
        return m

    def iter_messages(self) -> Iterator["Message"]:
        yield self
        for name, value in self.values.items():
            for child in _child_messages(self.schema.by_name[name], value):
                yield from child.iter_messages()

    def clear(self, path: str) -> None:
        """
        Removes the field at a dotted path ("header.produced_at"). Repeated
        message fields along the way apply the rest of the path to every
        element. Missing intermediate fields are ignored.
        """
        head, _, rest = path.partition(".")
        if head not in self.schema.by_name:
            raise KeyError(f"{self.schema.name} has no field {head!r}")
        if not rest:
            self.values.pop(head, None)
            return
        f = self.schema.by_name[head]
        if head not in self.values:
            return
        for child in _child_messages(f, self.values[head]):
            child.clear(rest)


def _child_messages(f: FieldSpec, value: Any) -> List[Message]:
    if f.kind == "message":
        if f.repeated:
            return list(value)
        return [value] if value is not None else []
    if f.kind == "map" and f.value_kind == "message":
        return list(value.values())
    return []


def _len_prefixed_if(kind: str, payload: bytes) -> bytes:
    if kind in ("string", "bytes"):
        return encode_uvarint(len(payload)) + payload
    return payload
