# src/document_zips/results.py

"""
Explicit result type returned across the service and migration boundaries.

Helpers inside the pipeline raise the typed exceptions from `exceptions.py`;
the boundary catches them and hands callers an `Ok` or an `Err` so each caller
decides whether a failure is a per-item skip or a hard failure.
"""

from dataclasses import dataclass
from typing import Generic, TypeVar, Union

from .exceptions import DocumentZipError

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    value: T

    @property
    def is_ok(self) -> bool:
        return True


@dataclass(frozen=True, slots=True)
class Err:
    error: DocumentZipError

    @property
    def is_ok(self) -> bool:
        return False

    @property
    def message(self) -> str:
        return self.error.message


Result = Union[Ok[T], Err]
