from types import SimpleNamespace

import pytest

from attachment_pipeline.common.errors import PermanentError
from attachment_pipeline.domain.enums import FileCategory
from attachment_pipeline.processors.registry import ProcessorRegistry, build_default_registry


def test_default_registry_covers_all_categories():
    s = SimpleNamespace(
        thumbnail_max_width=200,
        thumbnail_max_height=100,
        thumbnail_format="png",
        model3d_compress_threshold_mb=1,
        model3d_draco_quantization_bits=12,
    )
    reg = build_default_registry(s)
    assert set(reg) == set(FileCategory)
    img = reg.get("image")
    assert (img.max_width, img.max_height, img.image_format) == (200, 100, "PNG")
    model = reg.get(FileCategory.model3d)
    assert model.compress_threshold_bytes == 1024 * 1024
    assert model.quantization_bits == 12


def test_missing_processor_is_permanent():
    reg = ProcessorRegistry()
    assert "image" not in reg
    assert "bogus" not in reg
    with pytest.raises(PermanentError):
        reg.get(FileCategory.image)
