"""
Генерация идентификаторов.

Назначение:
- job_id для задач очереди
- worker_id для воркеров пула
- event_id для realtime-событий
"""

from __future__ import annotations

import os
import secrets
import socket
from datetime import UTC, datetime


def new_event_id(prefix: str = "evt") -> str:
    """
    Идентификатор события (лог/очереди/трассировка).
    Формат: <prefix>_<UTCYYYYMMDDHHMMSS>_<rand>
    """
    ts = datetime.now(UTC).strftime("%Y%m%d%H%M%S")
    rnd = secrets.token_hex(6)
    return f"{prefix}_{ts}_{rnd}"


def new_job_id(prefix: str = "job") -> str:
    """Идентификатор задачи обработки файла."""
    return new_event_id(prefix)


def new_worker_id(index: int, prefix: str = "worker") -> str:
    """
    Идентификатор воркера: <prefix>-<host>-<pid>-<index>.
    Уникален между процессами, чтобы lease не путались.
    """
    host = socket.gethostname().split(".")[0] or "local"
    return f"{prefix}-{host}-{os.getpid()}-{index}"
