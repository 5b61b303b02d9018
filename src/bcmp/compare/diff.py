from __future__ import annotations

import json
from typing import Any, Dict, Iterator, List, Optional, Tuple

from bcmp.chain import Block
from bcmp.codec.message import Message
from bcmp.codec.wire import split_raw_fields


_MISSING = object()


def compare(
    reference: Optional[Block],
    current: Optional[Block],
    include_unknown_fields: bool = False,
) -> Tuple[bool, List[str]]:
    """
    Returns (is_equal, differences) for two blocks carrying the same id.

    Without include_unknown_fields, fields the schema does not know are
    dropped on both sides before comparing. With it, the unknown-field bags
    are compared field number by field number, for the root message and for
    every nested message present on both sides.

    Known fields are compared structurally; when they differ, every differing
    leaf is rendered as one "@ [path]" entry with "-" (reference) and "+"
    (current) lines.
    """
    if reference is None and current is None:
        return True, []
    if reference is current:
        return True, []

    ref_valid = reference is not None and reference.is_valid()
    cur_valid = current is not None and current.is_valid()
    if ref_valid and not cur_valid:
        return False, ["reference block is valid protobuf message, but current block is invalid"]
    if not ref_valid and cur_valid:
        return False, ["reference block is invalid protobuf message, but current block is valid"]
    if not ref_valid and not cur_valid:
        return True, []

    ref_msg = reference.message
    cur_msg = current.message
    differences: List[str] = []

    if include_unknown_fields:
        differences.extend(unknown_field_differences(ref_msg, cur_msg))
    else:
        ref_msg = ref_msg.strip_unknown()
        cur_msg = cur_msg.strip_unknown()

    ref_tree = _block_tree(reference, ref_msg)
    cur_tree = _block_tree(current, cur_msg)
    if ref_tree != cur_tree:
        differences.extend(render_diff(ref_tree, cur_tree))

    return not differences, differences


def _block_tree(block: Block, msg: Message) -> Dict[str, Any]:
    return {
        "number": block.number,
        "id": block.id,
        "parent_id": block.parent_id,
        "parent_num": block.parent_num,
        "payload": msg.to_tree(),
    }


# ---------------------------------------
# Unknown fields
# ---------------------------------------
def _paired_messages(ref: Message, cur: Message, path: str = "") -> Iterator[Tuple[str, Message, Message]]:
    yield path, ref, cur
    if ref.type_name != cur.type_name:
        return

    for f in ref.schema.fields:
        rv = ref.values.get(f.name)
        cv = cur.values.get(f.name)
        if rv is None or cv is None:
            continue
        sub = f"{path}.{f.name}" if path else f.name

        if f.kind == "message" and f.repeated:
            for i, (a, b) in enumerate(zip(rv, cv)):
                yield from _paired_messages(a, b, f"{sub}[{i}]")
        elif f.kind == "message":
            yield from _paired_messages(rv, cv, sub)
        elif f.kind == "map" and f.value_kind == "message":
            for k, a in rv.items():
                if k in cv:
                    yield from _paired_messages(a, cv[k], f"{sub}[{k!r}]")


def unknown_field_differences(ref: Message, cur: Message) -> List[str]:
    out: List[str] = []
    for path, a, b in _paired_messages(ref, cur):
        if a.unknown == b.unknown:
            continue

        where = f" at {path}" if path else ""
        mx = split_raw_fields(a.unknown)
        my = split_raw_fields(b.unknown)

        for num, rv in mx.items():
            cv = my.get(num)
            if cv is None:
                out.append(f"reference has unknown field {num} ({rv.hex()}), current does not{where}")
            elif rv != cv:
                out.append(
                    f"unknown field {num} differs between reference and current{where} "
                    f"(reference: {rv.hex()}, current: {cv.hex()})"
                )
        for num, cv in my.items():
            if num not in mx:
                out.append(f"current has unknown field {num} ({cv.hex()}), reference does not{where}")
    return out


# ---------------------------------------
# Structural diff rendering
# ---------------------------------------
def render_diff(reference: Any, current: Any) -> List[str]:
    """
    One entry per differing leaf:
      @ ["payload","header","gas_used"]
      - 21000
      + 21001
    Keys present on one side only get a single "-" or "+" line.
    """
    out: List[str] = []
    _diff(reference, current, [], out)
    return out


def _diff(a: Any, b: Any, path: List[Any], out: List[str]) -> None:
    if isinstance(a, dict) and isinstance(b, dict):
        for k, v in a.items():
            if k not in b:
                out.append(_entry(path + [k], old=v))
            else:
                _diff(v, b[k], path + [k], out)
        for k, v in b.items():
            if k not in a:
                out.append(_entry(path + [k], new=v))
        return

    if isinstance(a, list) and isinstance(b, list):
        for i in range(max(len(a), len(b))):
            if i >= len(b):
                out.append(_entry(path + [i], old=a[i]))
            elif i >= len(a):
                out.append(_entry(path + [i], new=b[i]))
            else:
                _diff(a[i], b[i], path + [i], out)
        return

    if a != b or type(a) is not type(b):
        out.append(_entry(path, old=a, new=b))


def _entry(path: List[Any], old: Any = _MISSING, new: Any = _MISSING) -> str:
    lines = ["@ " + json.dumps(path, separators=(",", ":"))]
    if old is not _MISSING:
        lines.append("- " + json.dumps(old, sort_keys=True))
    if new is not _MISSING:
        lines.append("+ " + json.dumps(new, sort_keys=True))
    return "\n".join(lines)
