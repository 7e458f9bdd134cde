from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, List, Optional


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Notice:
    title: str
    description: str = ""
    variant: str = "default"  # "default" | "destructive"
    retry: Optional[Callable[[], None]] = None


class Notifier:
    """Toast-style notices for the host UI; keeps the most recent ones."""

    def __init__(self, *, keep: int = 50) -> None:
        self._recent: Deque[Notice] = deque(maxlen=keep)
        self._listeners: List[Callable[[Notice], None]] = []

    def subscribe(self, listener: Callable[[Notice], None]) -> None:
        self._listeners.append(listener)

    def notify(self, notice: Notice) -> None:
        log = logger.warning if notice.variant == "destructive" else logger.info
        log("%s: %s", notice.title, notice.description)
        self._recent.append(notice)
        for listener in list(self._listeners):
            listener(notice)

    def info(self, title: str, description: str = "") -> None:
        self.notify(Notice(title=title, description=description))

    def error(self, title: str, description: str = "", *, retry: Optional[Callable[[], None]] = None) -> None:
        self.notify(Notice(title=title, description=description, variant="destructive", retry=retry))

    @property
    def recent(self) -> List[Notice]:
        return list(self._recent)

    def last(self) -> Optional[Notice]:
        return self._recent[-1] if self._recent else None


__all__ = ["Notice", "Notifier"]
