"""
Процессоры-заглушки: видео, аудио, документы.

Точки расширения: производный файл пока не создаётся, вложение помечается
как обработанное (processing_status=completed), чтобы клиент не ждал вечно.
"""

from __future__ import annotations

from attachment_pipeline.domain.enums import FileCategory
from attachment_pipeline.queue.tasks import JobPayload

from .base import BaseProcessor, DerivedResult


class StubProcessor(BaseProcessor):
    def __init__(self, category: FileCategory) -> None:
        self.category = category

    def process(self, source: bytes, payload: JobPayload) -> DerivedResult:
        return DerivedResult.completed(details={"size_bytes": len(source), "stub": True})


class VideoProcessor(StubProcessor):
    def __init__(self) -> None:
        super().__init__(FileCategory.video)


class AudioProcessor(StubProcessor):
    def __init__(self) -> None:
        super().__init__(FileCategory.audio)


class DocumentProcessor(StubProcessor):
    def __init__(self) -> None:
        super().__init__(FileCategory.document)
