from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


DEFAULT_SEGMENT_SIZE = 100_000
DEFAULT_BUNDLE_SIZE = 100


@dataclass
class CompareConfig:
    show_diff: bool = False
    include_unknown_fields: bool = False
    segment_size: int = DEFAULT_SEGMENT_SIZE
    bundle_size: int = DEFAULT_BUNDLE_SIZE  # blocks per bundle file, only narrows the listing
    schema_path: Optional[str] = None
