"""Notice Board — UserNotifier that logs user-facing notices and keeps a bounded history.

Invariants:
    - Every notice is logged on the backbone.notices logger (error notices at ERROR level)
    - History holds at most `history_size` notices, newest last
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone

logger = logging.getLogger("backbone.notices")


@dataclass(frozen=True)
class Notice:
    level: str
    message: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "level": self.level,
            "message": self.message,
            "created_at": self.created_at.isoformat(),
        }


class NoticeBoard:
    def __init__(self, history_size: int = 50):
        self._history: deque[Notice] = deque(maxlen=history_size)

    def show_error(self, message: str) -> None:
        logger.error(f"User notice: {message}")
        self._history.append(Notice("error", message))

    def show_success(self, message: str) -> None:
        logger.info(f"User notice: {message}")
        self._history.append(Notice("success", message))

    def recent(self, count: int | None = None) -> list[Notice]:
        items = list(self._history)
        if count is None:
            return items
        return items[-count:] if count > 0 else []

    def clear(self) -> None:
        self._history.clear()
