from __future__ import annotations

import io

import pytest
from conftest import make_payload
from PIL import Image

from attachment_pipeline.common.errors import PermanentError
from attachment_pipeline.domain.enums import DerivedKind, ProcessingStatus
from attachment_pipeline.processors.image import ImageProcessor, fit_within


def _jpeg(width: int, height: int) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (width, height), (200, 30, 30)).save(buf, format="JPEG")
    return buf.getvalue()


def test_fit_within_keeps_aspect_and_never_upscales():
    assert fit_within(800, 600, 300, 300) == (300, 225)
    assert fit_within(600, 800, 300, 300) == (225, 300)
    assert fit_within(100, 50, 300, 300) == (100, 50)
    with pytest.raises(ValueError):
        fit_within(0, 10, 300, 300)


def test_thumbnail_from_jpeg():
    res = ImageProcessor().process(_jpeg(800, 600), make_payload(filename="cat.jpg"))

    assert res.status == ProcessingStatus.completed
    art = res.artifact
    assert art.kind == DerivedKind.thumbnail
    assert art.content_type == "image/webp"
    assert art.suggested_name == "thumb_cat.jpg.webp"
    with Image.open(io.BytesIO(art.data)) as thumb:
        assert thumb.format == "WEBP"
        assert thumb.width <= 300 and thumb.height <= 300
        assert thumb.size == (300, 225)
    assert res.details == {"original_size": [800, 600], "thumbnail_size": [300, 225]}


def test_small_image_not_enlarged():
    res = ImageProcessor(image_format="PNG").process(_jpeg(40, 20), make_payload())
    with Image.open(io.BytesIO(res.artifact.data)) as thumb:
        assert thumb.size == (40, 20)
        assert thumb.format == "PNG"


def test_corrupt_image_is_permanent_error():
    with pytest.raises(PermanentError) as ei:
        ImageProcessor().process(b"not an image", make_payload())
    assert ei.value.code == "corrupt_file"
    assert ei.value.retryable is False
