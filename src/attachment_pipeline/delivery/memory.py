"""
ResultSink в памяти (QUEUE_MODE=inline, тесты).
"""

from __future__ import annotations

import threading
from typing import Any


class InMemoryResultSink:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.messages: dict[str, dict[str, Any]] = {}
        self.events: list[tuple[str, dict[str, Any]]] = []

    def update_message(self, message_id: str, fields: dict[str, Any]) -> None:
        with self._lock:
            self.messages.setdefault(message_id, {}).update(fields)

    def publish(self, room_id: str, event: dict[str, Any]) -> None:
        with self._lock:
            self.events.append((room_id, dict(event)))

    def events_for(self, room_id: str) -> list[dict[str, Any]]:
        with self._lock:
            return [e for r, e in self.events if r == room_id]
