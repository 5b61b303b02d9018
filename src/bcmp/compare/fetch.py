from __future__ import annotations

import threading
from typing import Callable, Dict, List, Optional, Tuple

import zstandard as zstd

from bcmp.chain import Block, SanitizeFunc
from bcmp.codec.dbin import BundleRecord, DBinReader
from bcmp.errors import RunCancelled, SourceOpenError
from bcmp.store.local import LocalStore


class WarnOnce:
    """
    Check-and-set flag shared by the concurrent fetches of one run. The first
    caller of fire() gets True, everybody else False.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._fired = False

    def fire(self) -> bool:
        with self._lock:
            if self._fired:
                return False
            self._fired = True
            return True

    @property
    def fired(self) -> bool:
        return self._fired


def read_bundle(
    store: LocalStore,
    filename: str,
    bundle_start: int,
    stop_block: int,
    sanitize: SanitizeFunc,
    warn_extra: WarnOnce,
    decode_block: Callable[[BundleRecord], Block],
    cancel: Optional[threading.Event] = None,
    out: Callable[[str], None] = print,
) -> Tuple[List[str], Dict[str, Block]]:
    """
    Reads one bundle from store and returns (ids in stream order, id -> block).

    Blocks numbered stop_block or above end the read. Blocks numbered below
    bundle_start come from the old overlapping bundle layout and are skipped.
    A block whose payload cannot be decoded ends the read early; what was
    read up to that point is still returned.
    """
    stream = store.open_object(filename)

    ids: List[str] = []
    blocks: Dict[str, Block] = {}

    with stream:
        try:
            reader = DBinReader(stream)
        except (ValueError, OSError, zstd.ZstdError) as e:
            raise SourceOpenError(f"creating block reader for {store.object_url(filename)!r}: {e}") from e

        while True:
            if cancel is not None and cancel.is_set():
                raise RunCancelled(f"reading {store.object_url(filename)!r}: run cancelled")

            try:
                rec = reader.read()
            except (ValueError, OSError, zstd.ZstdError) as e:
                raise SourceOpenError(f"reading blocks from {store.object_url(filename)!r}: {e}") from e
            if rec is None:
                break
            if rec.number >= stop_block:
                break
            if rec.number < bundle_start:
                if warn_extra.fire():
                    out(
                        f"Warn: Bundle file {store.object_url(filename)} contains block {rec.number}, "
                        "preceding its start_block. This 'feature' is not used anymore and extra blocks "
                        "like this one will be ignored during compare"
                    )
                continue

            try:
                block = decode_block(rec)
            except ValueError as e:
                out(f"Error unmarshalling block {rec.number} : {e}")
                break

            ids.append(rec.id)
            blocks[rec.id] = sanitize(block)

    return ids, blocks
