# app/utils/result.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Generic, List, TypeVar, Union

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T
    ok: bool = field(default=True, init=False)


@dataclass(frozen=True)
class Err:
    error: Exception
    ok: bool = field(default=False, init=False)

    @property
    def kind(self) -> str:
        return getattr(self.error, "kind", "unknown")

    @property
    def message(self) -> str:
        return str(self.error)


Result = Union[Ok[T], Err]


@dataclass
class BatchOutcome(Generic[T]):
    """Per-unit results of a batch; one failing unit never aborts the rest."""
    results: Dict[str, Result] = field(default_factory=dict)

    def add(self, key: str, result: Result) -> None:
        self.results[key] = result

    @property
    def values(self) -> List[T]:
        return [r.value for r in self.results.values() if r.ok]

    @property
    def errors(self) -> Dict[str, Err]:
        return {k: r for k, r in self.results.items() if not r.ok}

    @property
    def success_count(self) -> int:
        return sum(1 for r in self.results.values() if r.ok)

    @property
    def error_count(self) -> int:
        return sum(1 for r in self.results.values() if not r.ok)

    def summary(self) -> Dict[str, object]:
        return {
            "success_count": self.success_count,
            "error_count": self.error_count,
            "errors": {k: {"kind": e.kind, "details": e.message} for k, e in self.errors.items()},
        }
