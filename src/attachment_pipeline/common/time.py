"""
Утилиты времени.

Назначение:
- ISO UTC для представления задач
- epoch-секунды для расписания очереди (delayed / lease)
"""

from __future__ import annotations

import time
from datetime import UTC, datetime


def epoch_now() -> float:
    """
    Текущее время в секундах с эпохи (float).
    """
    return time.time()


def epoch_to_iso(ts: float | None) -> str | None:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, UTC).isoformat()
