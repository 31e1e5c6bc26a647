"""Query Results — the result-or-error value returned by every executor call.

Invariants:
    - Exactly one of data/error is meaningful: success=True carries data, success=False an error
    - Results are frozen; constructed only through ok() / fail()
"""

from dataclasses import dataclass, field
from typing import Generic, TypeVar

from backbone.core.errors import CategorizedError

T = TypeVar("T")


@dataclass(frozen=True)
class QueryResult(Generic[T]):
    success: bool
    data: T | None = None
    error: CategorizedError | None = None

    def __post_init__(self):
        if self.success and self.error is not None:
            raise ValueError("Successful QueryResult cannot carry an error")
        if not self.success and self.error is None:
            raise ValueError("Failed QueryResult must carry an error")

    @classmethod
    def ok(cls, data: T) -> "QueryResult[T]":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: CategorizedError) -> "QueryResult[T]":
        return cls(success=False, error=error)


@dataclass(frozen=True)
class BatchResult:
    """Aggregate of concurrently executed operations, in input order."""
    results: list[QueryResult] = field(default_factory=list)

    @property
    def all_succeeded(self) -> bool:
        return all(r.success for r in self.results)

    @property
    def errors(self) -> list[CategorizedError]:
        return [r.error for r in self.results if r.error is not None]
