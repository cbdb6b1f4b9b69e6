"""Tagged results for registry calls.

An empty device list and a failed fetch must never look the same, so reads
return Ok([]) or Err(reason) instead of a bare list.
"""

from dataclasses import dataclass
from typing import Any, Generic, TypeVar, Union

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    reason: str
    status_code: int | None = None

    @property
    def ok(self) -> bool:
        return False

    @property
    def conflict(self) -> bool:
        return self.status_code == 409


Result = Union[Ok[Any], Err]
