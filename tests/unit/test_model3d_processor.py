from __future__ import annotations

import json
import struct

import pytest
from conftest import make_payload

from attachment_pipeline.common.errors import PermanentError
from attachment_pipeline.domain.enums import DerivedKind, ProcessingStatus
from attachment_pipeline.processors import model3d as model3d_mod
from attachment_pipeline.processors.glb_validator import validate_glb
from attachment_pipeline.processors.gltf import DRACO_EXTENSION
from attachment_pipeline.processors.model3d import Model3DProcessor

trimesh = pytest.importorskip("trimesh")


def _obj_bytes() -> bytes:
    data = trimesh.creation.box(extents=(1.0, 2.0, 3.0)).export(file_type="obj")
    return data.encode("utf-8") if isinstance(data, str) else data


def _glb_json(glb: bytes) -> dict:
    json_len = struct.unpack_from("<I", glb, 12)[0]
    return json.loads(glb[20 : 20 + json_len])


def test_unsupported_model_extension_is_skipped():
    proc = Model3DProcessor()
    assert proc.skip_reason(make_payload(filename="scene.dxd")) == "unsupported_model_extension:.dxd"
    assert proc.skip_reason(make_payload(filename="part.OBJ")) is None
    assert proc.skip_reason(make_payload(filename="part.stl")) is None


def test_small_obj_packed_without_compression(tmp_path):
    proc = Model3DProcessor(scratch_root=tmp_path)
    res = proc.process(_obj_bytes(), make_payload(filename="box.obj"))

    assert res.status == ProcessingStatus.completed
    art = res.artifact
    assert art.kind == DerivedKind.render
    assert art.suggested_name == "box.glb"
    assert art.content_type == "model/gltf-binary"
    assert art.data[:4] == b"glTF"
    assert validate_glb(art.data) == []
    assert DRACO_EXTENSION not in _glb_json(art.data).get("extensionsUsed", [])
    assert res.details["compressed"] is False
    assert res.warnings == []
    # временная папка задачи удалена
    assert list(tmp_path.iterdir()) == []


def test_obj_above_threshold_is_draco_compressed(tmp_path):
    proc = Model3DProcessor(compress_threshold_bytes=10, scratch_root=tmp_path)
    res = proc.process(_obj_bytes(), make_payload(filename="box.obj"))

    gltf = _glb_json(res.artifact.data)
    assert DRACO_EXTENSION in gltf["extensionsUsed"]
    assert DRACO_EXTENSION in gltf["extensionsRequired"]
    prim = gltf["meshes"][0]["primitives"][0]
    assert DRACO_EXTENSION in prim["extensions"]
    assert validate_glb(res.artifact.data) == []
    assert res.details["compressed"] is True
    assert res.details["fallback_used"] is False


def test_invalid_compressed_output_falls_back_to_uncompressed(tmp_path, monkeypatch):
    calls: list[bool] = []

    def _validate(glb: bytes) -> list[str]:
        compressed = DRACO_EXTENSION in _glb_json(glb).get("extensionsUsed", [])
        calls.append(compressed)
        return ["accessor_0_out_of_bounds"] if compressed else []

    monkeypatch.setattr(model3d_mod, "validate_glb", _validate)
    proc = Model3DProcessor(compress_threshold_bytes=10, scratch_root=tmp_path)
    res = proc.process(_obj_bytes(), make_payload(filename="box.obj"))

    assert calls == [True, False]
    assert DRACO_EXTENSION not in _glb_json(res.artifact.data).get("extensionsUsed", [])
    assert res.details["fallback_used"] is True
    assert res.details["compressed"] is False
    assert res.warnings == ["compressed_output_invalid"]


def test_invalid_uncompressed_output_accepted_with_warning(tmp_path, monkeypatch):
    monkeypatch.setattr(model3d_mod, "validate_glb", lambda glb: ["asset_version_missing"])
    proc = Model3DProcessor(scratch_root=tmp_path)
    res = proc.process(_obj_bytes(), make_payload(filename="box.obj"))
    assert res.status == ProcessingStatus.completed
    assert res.warnings == ["validation_failed"]
    assert res.details["fallback_used"] is False


def test_compression_error_degrades_to_uncompressed(tmp_path, monkeypatch):
    def _boom(*args, **kwargs):
        raise RuntimeError("draco failed")

    monkeypatch.setattr(model3d_mod, "draco_compress", _boom)
    proc = Model3DProcessor(compress_threshold_bytes=10, scratch_root=tmp_path)
    res = proc.process(_obj_bytes(), make_payload(filename="box.obj"))
    assert res.warnings == ["compression_failed"]
    assert res.details["compressed"] is False
    assert validate_glb(res.artifact.data) == []


def test_empty_source_is_permanent_error(tmp_path):
    with pytest.raises(PermanentError):
        Model3DProcessor(scratch_root=tmp_path).process(b"", make_payload(filename="a.stl"))


def test_scratch_dir_removed_on_conversion_failure(tmp_path):
    proc = Model3DProcessor(scratch_root=tmp_path)
    with pytest.raises(PermanentError):
        proc.process(b"this is not a mesh at all", make_payload(filename="broken.ply"))
    assert list(tmp_path.iterdir()) == []
