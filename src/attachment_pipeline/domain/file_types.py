"""
Таблица типов файлов.

Назначение:
- определить категорию вложения по MIME (приоритет) или расширению
- лимиты размера и таймауты обработки по категориям
- приоритеты очереди по категориям (меньше = раньше)
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import PurePath

from .enums import FileCategory

_MB = 1024 * 1024


@dataclass(frozen=True)
class FileTypeConfig:
    max_size_mb: int
    timeout_sec: float
    allowed_mime_types: tuple[str, ...]
    extensions: tuple[str, ...]

    @property
    def max_size_bytes(self) -> int:
        return self.max_size_mb * _MB


FILE_TYPE_CONFIG: dict[FileCategory, FileTypeConfig] = {
    FileCategory.image: FileTypeConfig(
        max_size_mb=10,
        timeout_sec=60,
        allowed_mime_types=("image/jpeg", "image/jpg", "image/png", "image/gif", "image/webp"),
        extensions=(".jpg", ".jpeg", ".png", ".gif", ".webp"),
    ),
    FileCategory.document: FileTypeConfig(
        max_size_mb=20,
        timeout_sec=60,
        allowed_mime_types=(
            "application/pdf",
            "application/msword",
            "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
            "application/vnd.ms-excel",
            "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
            "text/csv",
            "text/plain",
            "text/markdown",
        ),
        extensions=(".pdf", ".doc", ".docx", ".xls", ".xlsx", ".csv", ".txt", ".md"),
    ),
    FileCategory.video: FileTypeConfig(
        max_size_mb=300,
        timeout_sec=300,
        allowed_mime_types=("video/mp4", "video/webm", "video/quicktime", "video/x-msvideo"),
        extensions=(".mp4", ".webm", ".mov", ".avi"),
    ),
    FileCategory.audio: FileTypeConfig(
        max_size_mb=100,
        timeout_sec=120,
        allowed_mime_types=("audio/mpeg", "audio/mp3", "audio/wav", "audio/ogg", "audio/webm"),
        extensions=(".mp3", ".wav", ".ogg", ".webm"),
    ),
    # У 3D-файлов нет стандартного MIME, поэтому проверка только по расширению
    FileCategory.model3d: FileTypeConfig(
        max_size_mb=300,
        timeout_sec=300,
        allowed_mime_types=("application/octet-stream", "model/stl", "application/sla"),
        extensions=(".stl", ".obj", ".ply", ".dxd"),
    ),
}

_PRIORITIES: dict[FileCategory, int] = {
    FileCategory.image: 1,
    FileCategory.document: 2,
    FileCategory.audio: 3,
    FileCategory.video: 4,
}
DEFAULT_PRIORITY = 5


def priority_for(category: FileCategory | str) -> int:
    """
    Приоритет очереди для категории (меньше = раньше).
    Видео последним: обрабатывается дольше всех.
    """
    try:
        return _PRIORITIES.get(FileCategory(category), DEFAULT_PRIORITY)
    except ValueError:
        return DEFAULT_PRIORITY


def file_extension(filename: str | None) -> str:
    if not filename:
        return ""
    return PurePath(filename).suffix.lower()


def category_by_mime(mime_type: str | None) -> FileCategory | None:
    if not mime_type:
        return None
    mime = mime_type.strip().lower()
    if mime.startswith("image/"):
        return FileCategory.image
    if mime.startswith("video/"):
        return FileCategory.video
    if mime.startswith("audio/"):
        return FileCategory.audio
    if mime.startswith("model/"):
        return FileCategory.model3d
    if mime in FILE_TYPE_CONFIG[FileCategory.document].allowed_mime_types:
        return FileCategory.document
    return None


def category_by_extension(filename: str | None) -> FileCategory | None:
    ext = file_extension(filename)
    if not ext:
        return None
    for category, cfg in FILE_TYPE_CONFIG.items():
        if ext in cfg.extensions:
            return category
    return None


def detect_category(mime_type: str | None, filename: str | None) -> FileCategory | None:
    """
    Категория файла: сначала MIME, потом расширение.
    """
    return category_by_mime(mime_type) or category_by_extension(filename)


def timeout_for(category: FileCategory | str) -> float:
    try:
        return FILE_TYPE_CONFIG[FileCategory(category)].timeout_sec
    except (KeyError, ValueError):
        return FILE_TYPE_CONFIG[FileCategory.document].timeout_sec


def is_allowed(mime_type: str | None, filename: str | None, size_bytes: int | None = None) -> bool:
    """
    Проверка для стороны загрузки: категория известна, MIME разрешён, размер в лимите.
    """
    category = detect_category(mime_type, filename)
    if category is None:
        return False
    cfg = FILE_TYPE_CONFIG[category]
    if size_bytes is not None and size_bytes > cfg.max_size_bytes:
        return False
    if category == FileCategory.model3d:
        return True
    if mime_type and mime_type.strip().lower() not in cfg.allowed_mime_types:
        return False
    return True
