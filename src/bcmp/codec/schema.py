from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from bcmp.codec.wire import I32, I64, LEN, VARINT
from bcmp.errors import SchemaError


# ---------------------------------------
# Field kinds -> wire type
# ---------------------------------------
VARINT_KINDS = ("uint64", "uint32", "int64", "int32", "sint64", "sint32", "bool", "enum")
I64_KINDS = ("fixed64", "sfixed64", "double")
I32_KINDS = ("fixed32", "sfixed32", "float")
LEN_KINDS = ("string", "bytes", "message", "map")

SCALAR_KINDS = VARINT_KINDS + I64_KINDS + I32_KINDS + ("string", "bytes")
MAP_KEY_KINDS = ("uint64", "uint32", "int64", "int32", "sint64", "sint32", "bool",
                 "fixed64", "fixed32", "sfixed64", "sfixed32", "string")


def wire_type_for(kind: str) -> int:
    if kind in VARINT_KINDS:
        return VARINT
    if kind in I64_KINDS:
        return I64
    if kind in I32_KINDS:
        return I32
    if kind in LEN_KINDS:
        return LEN
    raise SchemaError(f"unknown field kind {kind!r}")


def is_packable(kind: str) -> bool:
    return kind in VARINT_KINDS or kind in I64_KINDS or kind in I32_KINDS


@dataclass
class FieldSpec:
    number: int
    name: str
    kind: str
    repeated: bool = False
    message: Optional[str] = None      # kind == "message", or map value message
    key_kind: Optional[str] = None     # kind == "map"
    value_kind: Optional[str] = None   # kind == "map"

    @property
    def wire_type(self) -> int:
        return wire_type_for(self.kind)


@dataclass
class MessageSchema:
    name: str
    fields: List[FieldSpec]
    by_number: Dict[int, FieldSpec] = field(init=False, repr=False)
    by_name: Dict[str, FieldSpec] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.by_number = {}
        self.by_name = {}
        for f in self.fields:
            if f.number in self.by_number:
                raise SchemaError(f"{self.name}: duplicate field number {f.number}")
            if f.name in self.by_name:
                raise SchemaError(f"{self.name}: duplicate field name {f.name!r}")
            self.by_number[f.number] = f
            self.by_name[f.name] = f


@dataclass
class Schema:
    """
    A set of message types sharing one namespace, plus the root type that a
    block payload decodes into.
    """
    messages: Dict[str, MessageSchema]
    root: str
    type_url: str
    sanitize: List[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.root not in self.messages:
            raise SchemaError(f"root message {self.root!r} is not defined")
        for m in self.messages.values():
            for f in m.fields:
                wire_type_for(f.kind)
                if f.kind == "message" and f.message not in self.messages:
                    raise SchemaError(f"{m.name}.{f.name}: unknown message type {f.message!r}")
                if f.kind == "map":
                    if f.repeated:
                        raise SchemaError(f"{m.name}.{f.name}: map fields cannot be repeated")
                    if f.key_kind not in MAP_KEY_KINDS:
                        raise SchemaError(f"{m.name}.{f.name}: invalid map key kind {f.key_kind!r}")
                    if f.value_kind == "message":
                        if f.message not in self.messages:
                            raise SchemaError(f"{m.name}.{f.name}: unknown message type {f.message!r}")
                    elif f.value_kind not in SCALAR_KINDS:
                        raise SchemaError(f"{m.name}.{f.name}: invalid map value kind {f.value_kind!r}")
        for path in self.sanitize:
            self._check_path(path)

    def _check_path(self, path: str) -> None:
        # every segment but the last must step into a message (or a map of messages)
        m = self.messages[self.root]
        parts = path.split(".")
        for i, part in enumerate(parts):
            f = m.by_name.get(part)
            if f is None:
                raise SchemaError(f"sanitize path {path!r}: {m.name} has no field {part!r}")
            if i == len(parts) - 1:
                return
            if f.kind == "message" or (f.kind == "map" and f.value_kind == "message"):
                m = self.messages[f.message]
            else:
                raise SchemaError(f"sanitize path {path!r}: {m.name}.{part} is not a message field")

    def message(self, name: str) -> MessageSchema:
        try:
            return self.messages[name]
        except KeyError:
            raise SchemaError(f"unknown message type {name!r}") from None

    @property
    def root_message(self) -> MessageSchema:
        return self.messages[self.root]


def _field_from_obj(owner: str, obj: Dict[str, Any]) -> FieldSpec:
    try:
        return FieldSpec(
            number=int(obj["number"]),
            name=str(obj["name"]),
            kind=str(obj["type"]),
            repeated=bool(obj.get("repeated", False)),
            message=obj.get("message"),
            key_kind=obj.get("key"),
            value_kind=obj.get("value"),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise SchemaError(f"{owner}: invalid field definition {obj!r}: {e}") from e


def schema_from_dict(obj: Dict[str, Any]) -> Schema:
    """
    JSON layout:
      {
        "type_url": "type.googleapis.com/acme.type.v1.Block",
        "root": "Block",
        "sanitize": ["header.produced_at"],
        "messages": {
          "Block": {"fields": [{"number": 1, "name": "number", "type": "uint64"}, ...]}
        }
      }
    """
    try:
        raw_messages = obj["messages"]
        root = obj["root"]
    except (KeyError, TypeError) as e:
        raise SchemaError(f"schema is missing key {e}") from e

    messages: Dict[str, MessageSchema] = {}
    for name, body in raw_messages.items():
        fields = [_field_from_obj(name, f) for f in body.get("fields", [])]
        messages[name] = MessageSchema(name=name, fields=fields)

    type_url = obj.get("type_url") or f"type.googleapis.com/{root}"
    return Schema(
        messages=messages,
        root=root,
        type_url=type_url,
        sanitize=list(obj.get("sanitize", [])),
    )


def load_schema(path: str) -> Schema:
    p = Path(path).expanduser()
    try:
        obj = json.loads(p.read_text(encoding="utf-8"))
    except FileNotFoundError:
        raise SchemaError(f"schema file {str(p)!r} not found") from None
    except json.JSONDecodeError as e:
        raise SchemaError(f"parsing schema file {str(p)!r}: {e}") from e
    return schema_from_dict(obj)
