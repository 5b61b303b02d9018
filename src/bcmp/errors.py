from __future__ import annotations

from typing import List


class CompareError(Exception):
    """Base class for every fatal condition of a comparison run."""


class InvalidRangeError(CompareError):
    pass


class SourceOpenError(CompareError):
    pass


class SchemaError(CompareError):
    pass


class OutOfOrderError(CompareError):
    pass


class RunCancelled(CompareError):
    pass


class DecodeError(ValueError):
    """A single payload could not be turned into the chain's block type."""


class BundleReadError(CompareError):
    """
    Both concurrent bundle fetches report into one of these, so a failure on
    the reference side never hides a failure on the current side.
    """

    def __init__(self, errors: List[BaseException]):
        self.errors = list(errors)
        super().__init__("; ".join(str(e) for e in self.errors))
