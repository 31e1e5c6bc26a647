"""Listener Registry — ordered observer storage with stable removal tokens.

Invariants:
    - Every add() returns a distinct ListenerToken, even for the same callable
    - remove() is idempotent: removing twice or removing an unknown token is a no-op
    - snapshot() preserves registration order

Design Decisions:
    - Tokens over reference-equality removal: registering one function twice yields
      two independent registrations, so removing one never drops the other
"""

import itertools
from dataclasses import dataclass
from typing import Callable, Generic, TypeVar

L = TypeVar("L", bound=Callable)


@dataclass(frozen=True)
class ListenerToken:
    """Handle identifying one registration."""
    value: int


class ListenerRegistry(Generic[L]):
    """Holds listeners keyed by token, in registration order."""

    def __init__(self):
        self._counter = itertools.count(1)
        self._listeners: dict[ListenerToken, L] = {}

    def add(self, listener: L) -> ListenerToken:
        token = ListenerToken(next(self._counter))
        self._listeners[token] = listener
        return token

    def remove(self, token: ListenerToken) -> bool:
        return self._listeners.pop(token, None) is not None

    def snapshot(self) -> list[L]:
        return list(self._listeners.values())

    def clear(self) -> None:
        self._listeners.clear()

    def __len__(self) -> int:
        return len(self._listeners)
