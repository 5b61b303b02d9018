import hashlib
import random
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from bcmp.chain import Block, Chain, chain_from_schema
from bcmp.codec.dbin import write_bundle
from bcmp.codec.message import Message
from bcmp.codec.schema import Schema, schema_from_dict


def toy_schema_dict() -> Dict[str, Any]:
    """
    Small "acme" chain: a block with a header, transactions and a balances
    map. header.produced_at is wall-clock metadata and gets sanitized.
    """
    return {
        "type_url": "type.googleapis.com/acme.type.v1.Block",
        "root": "Block",
        "sanitize": ["header.produced_at"],
        "messages": {
            "Block": {"fields": [
                {"number": 1, "name": "number", "type": "uint64"},
                {"number": 2, "name": "hash", "type": "string"},
                {"number": 3, "name": "header", "type": "message", "message": "Header"},
                {"number": 4, "name": "transactions", "type": "message", "message": "Transaction", "repeated": True},
                {"number": 5, "name": "balances", "type": "map", "key": "string", "value": "uint64"},
            ]},
            "Header": {"fields": [
                {"number": 1, "name": "parent_hash", "type": "string"},
                {"number": 2, "name": "timestamp", "type": "int64"},
                {"number": 3, "name": "gas_used", "type": "uint64"},
                {"number": 4, "name": "produced_at", "type": "int64"},
                {"number": 5, "name": "extra", "type": "bytes"},
            ]},
            "Transaction": {"fields": [
                {"number": 1, "name": "hash", "type": "string"},
                {"number": 2, "name": "from", "type": "string"},
                {"number": 3, "name": "to", "type": "string"},
                {"number": 4, "name": "value", "type": "uint64"},
                {"number": 5, "name": "logs", "type": "string", "repeated": True},
                {"number": 6, "name": "status", "type": "enum"},
                {"number": 7, "name": "nonces", "type": "uint64", "repeated": True},
            ]},
        },
    }


def toy_schema() -> Schema:
    return schema_from_dict(toy_schema_dict())


def toy_chain() -> Chain:
    return chain_from_schema(toy_schema(), name="acme")


def _hash(*parts: Any) -> str:
    return hashlib.sha256("/".join(str(p) for p in parts).encode("utf-8")).hexdigest()[:16]


def toy_block(chain: Chain, number: int, seed: int = 7, tx_count: Optional[int] = None) -> Block:
    """
    Deterministic block for (number, seed). Same inputs -> same bytes.
    """
    rng = random.Random(seed * 1_000_003 + number)
    types = chain.schema
    block_hash = _hash("block", number, seed)
    parent_hash = _hash("block", number - 1, seed) if number > 0 else ""

    header = Message.new(
        types,
        "Header",
        parent_hash=parent_hash,
        timestamp=1_600_000_000 + number * 2,
        gas_used=rng.randint(0, 30_000_000),
        produced_at=rng.randint(0, 1 << 40),
        extra=bytes(rng.getrandbits(8) for _ in range(4)),
    )

    txs: List[Message] = []
    for i in range(rng.randint(0, 3) if tx_count is None else tx_count):
        txs.append(Message.new(
            types,
            "Transaction",
            hash=_hash("tx", number, i, seed),
            **{"from": f"0x{rng.getrandbits(32):08x}"},
            to=f"0x{rng.getrandbits(32):08x}",
            value=rng.randint(1, 10 ** 9),
            logs=[f"log-{j}" for j in range(rng.randint(0, 2))],
            status=rng.choice([0, 1]),
            nonces=[rng.randint(0, 500) for _ in range(rng.randint(0, 3))],
        ))

    msg = Message.new(
        types,
        number=number,
        hash=block_hash,
        header=header,
        transactions=txs,
        balances={f"0x{rng.getrandbits(16):04x}": rng.randint(0, 10 ** 6) for _ in range(rng.randint(0, 2))},
    )
    return Block(number=number, id=block_hash, message=msg, parent_id=parent_hash, parent_num=max(number - 1, 0))


def toy_blocks(chain: Chain, start: int, count: int, seed: int = 7) -> List[Block]:
    return [toy_block(chain, n, seed=seed) for n in range(start, start + count)]


def bundle_name(start: int) -> str:
    return f"{start:010d}"


def write_toy_bundle(
    root: str,
    name: str,
    chain: Chain,
    blocks: Iterable[Block],
    compress: bool = False,
) -> Path:
    ext = ".dbin.zst" if compress else ".dbin"
    path = Path(root) / (name + ext)
    write_bundle(str(path), [chain.encode_block(b) for b in blocks], compress=compress)
    return path


def write_toy_store(
    root: str,
    chain: Chain,
    start: int,
    stop: int,
    bundle_size: int = 100,
    seed: int = 7,
    compress: bool = False,
) -> List[Path]:
    """
    Writes bundles covering [start, stop), one file per bundle_size blocks.
    """
    out = []
    for bundle_start in range(start, stop, bundle_size):
        blocks = toy_blocks(chain, bundle_start, min(bundle_size, stop - bundle_start), seed=seed)
        out.append(write_toy_bundle(root, bundle_name(bundle_start), chain, blocks, compress=compress))
    return out
