"""
Процессор изображений: превью (thumbnail).

Алгоритм:
- декодируем (Pillow), учитываем EXIF-ориентацию
- вписываем в бокс max_width x max_height с сохранением пропорций, без увеличения
- кодируем в компактный формат (WEBP по умолчанию)

Битое/неподдерживаемое изображение → PermanentError (без ретраев).
"""

from __future__ import annotations

import io
from pathlib import PurePath

from PIL import Image, ImageOps, UnidentifiedImageError

from attachment_pipeline.common.errors import ErrCode, PermanentError
from attachment_pipeline.domain.enums import DerivedKind, FileCategory
from attachment_pipeline.queue.tasks import JobPayload

from .base import BaseProcessor, DerivedArtifact, DerivedResult

_CONTENT_TYPES = {"WEBP": "image/webp", "PNG": "image/png", "JPEG": "image/jpeg"}


def fit_within(width: int, height: int, max_width: int, max_height: int) -> tuple[int, int]:
    """
    Размер, вписанный в бокс с сохранением пропорций. Не увеличивает.
    """
    if width <= 0 or height <= 0:
        raise ValueError("invalid_size")
    scale = min(max_width / width, max_height / height, 1.0)
    return max(1, round(width * scale)), max(1, round(height * scale))


class ImageProcessor(BaseProcessor):
    category = FileCategory.image

    def __init__(
        self, *, max_width: int = 300, max_height: int = 300, image_format: str = "WEBP"
    ) -> None:
        self.max_width = max_width
        self.max_height = max_height
        self.image_format = image_format.upper()

    def process(self, source: bytes, payload: JobPayload) -> DerivedResult:
        try:
            with Image.open(io.BytesIO(source)) as img:
                img.load()
                img = ImageOps.exif_transpose(img)
                original_size = img.size
                thumb = self._resize(img)
                data = self._encode(thumb)
        except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as e:
            raise PermanentError(
                "Не удалось обработать изображение",
                ErrCode.CORRUPT_FILE,
                {"filename": payload.original_filename, "err": str(e)[:200]},
            ) from e

        ext = self.image_format.lower()
        name = f"thumb_{PurePath(payload.original_filename or 'image').name}.{ext}"
        return DerivedResult.completed(
            DerivedArtifact(
                data=data,
                suggested_name=name,
                kind=DerivedKind.thumbnail,
                content_type=_CONTENT_TYPES.get(self.image_format, "application/octet-stream"),
            ),
            details={
                "original_size": list(original_size),
                "thumbnail_size": list(thumb.size),
            },
        )

    def _resize(self, img: Image.Image) -> Image.Image:
        target = fit_within(img.width, img.height, self.max_width, self.max_height)
        if target == img.size:
            return img.copy()
        return img.resize(target, Image.Resampling.LANCZOS)

    def _encode(self, img: Image.Image) -> bytes:
        if self.image_format == "JPEG" and img.mode not in ("RGB", "L"):
            img = img.convert("RGB")
        elif img.mode not in ("RGB", "RGBA", "L", "LA"):
            img = img.convert("RGBA")
        buf = io.BytesIO()
        img.save(buf, format=self.image_format, quality=80)
        return buf.getvalue()
