from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Callable, Iterable, Optional

from bcmp.codec.dbin import BundleRecord
from bcmp.codec.message import Message
from bcmp.codec.schema import Schema, load_schema
from bcmp.errors import DecodeError


@dataclass
class Block:
    """
    One decoded record: envelope identity plus the chain-specific message.
    """
    number: int
    id: str
    message: Optional[Message]
    parent_id: str = ""
    parent_num: int = 0

    def ref(self) -> str:
        return f"#{self.number} ({self.id})"

    def is_valid(self) -> bool:
        return self.message is not None and self.message.is_valid()


SanitizeFunc = Callable[[Block], Block]


def no_sanitize(block: Block) -> Block:
    return block


def clear_fields(paths: Iterable[str]) -> SanitizeFunc:
    """
    Sanitizer removing fields that legitimately differ between two runs
    (e.g. wall-clock metadata). Works on a copy; applying it twice is the
    same as applying it once.
    """
    paths = list(paths)
    if not paths:
        return no_sanitize

    def sanitize(block: Block) -> Block:
        if block.message is None:
            return block
        msg = block.message.copy()
        for p in paths:
            msg.clear(p)
        return replace(block, message=msg)

    return sanitize


@dataclass
class Chain:
    name: str
    schema: Schema
    sanitize: SanitizeFunc = no_sanitize

    def decode_block(self, rec: BundleRecord) -> Block:
        if rec.payload_type_url != self.schema.type_url:
            raise DecodeError(
                f"mismatched message type: payload is {rec.payload_type_url!r}, expected {self.schema.type_url!r}"
            )
        try:
            msg = Message.decode(self.schema, rec.payload_value)
        except ValueError as e:
            raise DecodeError(str(e)) from e
        return Block(
            number=rec.number,
            id=rec.id,
            message=msg,
            parent_id=rec.parent_id,
            parent_num=rec.parent_num,
        )

    def encode_block(self, block: Block, timestamp_nanos: int = 0, lib_num: int = 0) -> BundleRecord:
        if block.message is None:
            raise ValueError("chain: cannot encode a block without message")
        return BundleRecord(
            number=block.number,
            id=block.id,
            payload_type_url=self.schema.type_url,
            payload_value=block.message.encode(),
            parent_id=block.parent_id,
            parent_num=block.parent_num,
            lib_num=lib_num,
            timestamp_nanos=timestamp_nanos,
        )


def chain_from_schema(schema: Schema, name: Optional[str] = None) -> Chain:
    return Chain(
        name=name or schema.root,
        schema=schema,
        sanitize=clear_fields(schema.sanitize),
    )


def load_chain(schema_path: str) -> Chain:
    return chain_from_schema(load_schema(schema_path))
