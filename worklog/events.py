"""
Notifications: the toast channel between board operations and the UI.

Board operations report outcomes here instead of raising; subscribers
(the UI, a log sink, tests) receive each toast as it is emitted.
"""
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List

from .schema import utc_now

logger = logging.getLogger(__name__)


@dataclass
class Toast:
    kind: str          # "success" | "error" | "info"
    message: str
    timestamp: str = field(default_factory=utc_now)


class Notifier:
    """Routes toasts to subscribers and keeps a bounded history."""

    def __init__(self, history_size: int = 100):
        self.subscribers: Dict[str, list] = {}  # kind -> list of callbacks
        self.history: List[Toast] = []
        self.history_size = history_size

    def subscribe(self, kind: str, callback: Callable[[Toast], None]) -> None:
        """Register a callback for a toast kind ("*" receives every kind)."""
        if kind not in self.subscribers:
            self.subscribers[kind] = []
        self.subscribers[kind].append(callback)

    def _emit(self, kind: str, message: str) -> Toast:
        toast = Toast(kind=kind, message=message)
        self.history.append(toast)
        del self.history[:-self.history_size]
        for callback in self.subscribers.get(kind, []) + self.subscribers.get("*", []):
            try:
                callback(toast)
            except Exception as e:
                logger.error(f"Error in {kind} toast callback: {e}")
        return toast

    def success(self, message: str) -> Toast:
        return self._emit("success", message)

    def error(self, message: str) -> Toast:
        logger.warning(message)
        return self._emit("error", message)

    def info(self, message: str) -> Toast:
        return self._emit("info", message)

    @property
    def last(self):
        return self.history[-1] if self.history else None
