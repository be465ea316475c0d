"""
Таблица диспетчеризации category -> Processor.

Собирается один раз на старте. Новая категория = новая запись в таблице,
воркер при этом не меняется.
"""

from __future__ import annotations

from collections.abc import Iterator

from attachment_pipeline.common.config import Settings, get_settings
from attachment_pipeline.common.errors import PermanentError
from attachment_pipeline.domain.enums import FileCategory

from .base import Processor
from .image import ImageProcessor
from .model3d import Model3DProcessor
from .stubs import AudioProcessor, DocumentProcessor, VideoProcessor


class ProcessorRegistry:
    def __init__(self) -> None:
        self._table: dict[FileCategory, Processor] = {}

    def register(self, processor: Processor) -> None:
        self._table[FileCategory(processor.category)] = processor

    def get(self, category: FileCategory | str) -> Processor:
        try:
            return self._table[FileCategory(category)]
        except (KeyError, ValueError) as e:
            raise PermanentError(
                "Нет процессора для типа файла", details={"category": str(category)}
            ) from e

    def __contains__(self, category: object) -> bool:
        try:
            return FileCategory(category) in self._table
        except ValueError:
            return False

    def __iter__(self) -> Iterator[FileCategory]:
        return iter(self._table)


def build_default_registry(settings: Settings | None = None) -> ProcessorRegistry:
    s = settings or get_settings()
    registry = ProcessorRegistry()
    registry.register(
        ImageProcessor(
            max_width=s.thumbnail_max_width,
            max_height=s.thumbnail_max_height,
            image_format=s.thumbnail_format,
        )
    )
    registry.register(
        Model3DProcessor(
            compress_threshold_bytes=int(s.model3d_compress_threshold_mb * 1024 * 1024),
            quantization_bits=s.model3d_draco_quantization_bits,
        )
    )
    registry.register(VideoProcessor())
    registry.register(AudioProcessor())
    registry.register(DocumentProcessor())
    return registry
