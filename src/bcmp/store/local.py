from __future__ import annotations

from pathlib import Path
from typing import BinaryIO, Callable, List, Tuple, Union

import zstandard as zstd

from bcmp.errors import SourceOpenError


BUNDLE_EXT = ".dbin"
ZSTD_EXT = ".dbin.zst"


def _padded(name: str) -> str:
    # bundle names are block numbers; the canonical listing form is 10 digits
    return name.zfill(10) if name.isdigit() else name


def _sort_key(name: str) -> Tuple[int, Union[int, str]]:
    if name.isdigit():
        return 0, int(name)
    return 1, name


class LocalStore:
    """
    A directory of bundle files. Object names are the file names without
    their ".dbin" / ".dbin.zst" extension.
    """

    def __init__(self, root: str):
        self.root = Path(root).expanduser()
        if not self.root.is_dir():
            raise SourceOpenError(f"store {str(self.root)!r} is not a directory")

    def _files(self) -> List[Tuple[str, Path]]:
        out = []
        for p in self.root.iterdir():
            if not p.is_file():
                continue
            if p.name.endswith(ZSTD_EXT):
                out.append((p.name[:-len(ZSTD_EXT)], p))
            elif p.name.endswith(BUNDLE_EXT):
                out.append((p.name[:-len(BUNDLE_EXT)], p))
        return out

    def _path(self, name: str) -> Path:
        for candidate in (self.root / (name + BUNDLE_EXT), self.root / (name + ZSTD_EXT)):
            if candidate.is_file():
                return candidate
        raise SourceOpenError(f"object {self.object_url(name)!r} not found")

    def walk(self, prefix: str, visit: Callable[[str], bool]) -> None:
        """
        Calls visit(name) for each bundle whose padded name starts with
        prefix, in ascending block order. A False return stops the walk.
        """
        names = sorted({name for name, _ in self._files()}, key=_sort_key)
        for name in names:
            if prefix and not _padded(name).startswith(prefix):
                continue
            if not visit(name):
                return

    def open_object(self, name: str) -> BinaryIO:
        p = self._path(name)
        try:
            f = p.open("rb")
        except OSError as e:
            raise SourceOpenError(f"opening {self.object_url(name)!r}: {e}") from e
        if p.name.endswith(ZSTD_EXT):
            return zstd.ZstdDecompressor().stream_reader(f, closefd=True)
        return f

    def object_url(self, name: str) -> str:
        return f"file://{self.root.resolve() / name}"

    def __repr__(self) -> str:
        return f"LocalStore({str(self.root)!r})"


def open_store(location: str) -> LocalStore:
    if location.startswith("file://"):
        location = location[len("file://"):]
    elif "://" in location:
        raise SourceOpenError(f"unsupported store scheme in {location!r}")
    return LocalStore(location)
