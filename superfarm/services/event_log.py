from collections import deque
from datetime import datetime, timezone
from typing import Callable, List
import logging

logger = logging.getLogger(__name__)

_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}


class EventLog:
    """Bounded sink of human-readable status messages for one session."""

    def __init__(self, max_entries: int = 100, tag: str = "Farm"):
        self.tag = tag
        self._entries = deque(maxlen=max_entries)
        self._subscribers: List[Callable[[str], None]] = []

    def add(self, message: str, level: str = "INFO"):
        timestamp = datetime.now(timezone.utc).strftime('%H:%M:%S')
        entry = f"[{timestamp}] {message}"
        self._entries.append(entry)
        logger.log(_LEVELS.get(level.upper(), logging.INFO), f"[{self.tag}] {message}")

        for callback in list(self._subscribers):
            try:
                callback(entry)
            except Exception as e:
                logger.error(f"[{self.tag}] Event subscriber failed: {e}")

    def subscribe(self, callback: Callable[[str], None]) -> Callable[[], None]:
        """Register a callback; returns a function that unsubscribes it."""
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def recent(self, limit: int = 50) -> List[str]:
        if limit <= 0:
            return []
        return list(self._entries)[-limit:]

    def __len__(self):
        return len(self._entries)
