from __future__ import annotations

import struct

from attachment_pipeline.processors.glb_validator import validate_glb
from attachment_pipeline.processors.gltf import DRACO_EXTENSION, GltfDocument, pack_glb


def _triangle_doc() -> GltfDocument:
    positions = struct.pack("<9f", 0, 0, 0, 1, 0, 0, 0, 1, 0)
    indices = struct.pack("<3I", 0, 1, 2)
    gltf = {
        "asset": {"version": "2.0"},
        "scene": 0,
        "scenes": [{"nodes": [0]}],
        "nodes": [{"mesh": 0}],
        "meshes": [{"primitives": [{"attributes": {"POSITION": 0}, "indices": 1}]}],
        "accessors": [
            {
                "bufferView": 0,
                "componentType": 5126,
                "type": "VEC3",
                "count": 3,
                "min": [0, 0, 0],
                "max": [1, 1, 0],
            },
            {"bufferView": 1, "componentType": 5125, "type": "SCALAR", "count": 3},
        ],
        "bufferViews": [
            {"buffer": 0, "byteOffset": 0, "byteLength": 36},
            {"buffer": 0, "byteOffset": 36, "byteLength": 12},
        ],
        "buffers": [{"byteLength": 48}],
    }
    return GltfDocument(gltf=gltf, buffers=[positions + indices])


def test_valid_triangle_has_no_issues():
    glb = pack_glb(_triangle_doc())
    assert glb[:4] == b"glTF"
    assert len(glb) % 4 == 0
    assert validate_glb(glb) == []


def test_header_problems():
    assert validate_glb(b"") == ["glb_too_short"]
    assert validate_glb(b"PK\x03\x04" + b"\x00" * 30) == ["glb_bad_magic"]

    glb = bytearray(pack_glb(_triangle_doc()))
    struct.pack_into("<I", glb, 8, len(glb) + 4)
    assert any(i.startswith("glb_length_mismatch") for i in validate_glb(bytes(glb)))


def test_accessor_out_of_bounds_detected():
    doc = _triangle_doc()
    doc.gltf["accessors"][0]["count"] = 10
    issues = validate_glb(pack_glb(doc))
    assert "accessor_0_out_of_bounds" in issues


def test_missing_position_bounds_and_bad_references():
    doc = _triangle_doc()
    del doc.gltf["accessors"][0]["min"]
    doc.gltf["nodes"][0]["mesh"] = 5
    doc.gltf["asset"] = {}
    issues = validate_glb(pack_glb(doc))
    assert "mesh_0_primitive_0_position_no_bounds" in issues
    assert "node_0_bad_mesh" in issues
    assert "asset_version_missing" in issues


def test_draco_extension_must_be_declared():
    doc = _triangle_doc()
    prim = doc.gltf["meshes"][0]["primitives"][0]
    prim["extensions"] = {DRACO_EXTENSION: {"bufferView": 7, "attributes": {"POSITION": 0}}}
    doc.gltf["extensionsRequired"] = [DRACO_EXTENSION]
    issues = validate_glb(pack_glb(doc))
    assert "mesh_0_primitive_0_draco_not_declared" in issues
    assert "mesh_0_primitive_0_draco_bad_buffer_view" in issues
    assert f"extension_required_not_used:{DRACO_EXTENSION}" in issues


def test_accessor_without_data_outside_draco():
    doc = _triangle_doc()
    del doc.gltf["accessors"][1]["bufferView"]
    assert "accessor_1_no_data" in validate_glb(pack_glb(doc))
