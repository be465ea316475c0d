"""
Доменные перечисления (enum).

Используются во всей системе:
- категории файлов (определяют процессор и приоритет)
- состояния задачи в очереди
- статус обработки вложения в сообщении
"""

from __future__ import annotations

import enum


class FileCategory(str, enum.Enum):
    """
    Категория вложения.
    """

    image = "image"
    video = "video"
    audio = "audio"
    document = "document"
    model3d = "model3d"


class JobState(str, enum.Enum):
    """
    Состояние задачи в очереди.
    """

    waiting = "waiting"
    active = "active"
    delayed = "delayed"
    completed = "completed"
    failed = "failed"


class ProcessingStatus(str, enum.Enum):
    """
    Статус обработки вложения (пишется в сообщение чата).

    skipped — no-op: производный файл сознательно не создаётся,
    это не успех и не ошибка.
    """

    processing = "processing"
    completed = "completed"
    skipped = "skipped"
    failed = "failed"


class DerivedKind(str, enum.Enum):
    """
    Тип производного файла.
    """

    thumbnail = "thumbnail"
    render = "render"
