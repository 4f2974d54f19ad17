"""Result of one asynchronous write."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class Success:
    result: Any = None


@dataclass(frozen=True)
class Failure:
    reason: BaseException

    @property
    def message(self) -> str:
        return str(self.reason) or type(self.reason).__name__


Outcome = Success | Failure
