"""
Структурный валидатор GLB.

Проверяет то, без чего вьюер не сможет открыть файл:
- заголовок, чанки, выравнивание
- JSON: asset.version, ссылки между buffers / bufferViews / accessors / meshes / nodes / scenes
- границы данных accessor'ов внутри bufferView
- корректность KHR_draco_mesh_compression

Возвращает список ошибок (пустой = валиден). Исключений наружу не бросает.
"""

from __future__ import annotations

import json
import struct
from typing import Any

from .gltf import (
    CHUNK_BIN,
    CHUNK_JSON,
    COMPONENT_DTYPES,
    DRACO_EXTENSION,
    GLB_MAGIC,
    GLB_VERSION,
    TYPE_SIZES,
)


def validate_glb(data: bytes) -> list[str]:
    issues: list[str] = []
    if len(data) < 20:
        return ["glb_too_short"]

    magic, version, length = struct.unpack_from("<4sII", data, 0)
    if magic != GLB_MAGIC:
        return ["glb_bad_magic"]
    if version != GLB_VERSION:
        issues.append(f"glb_unsupported_version:{version}")
    if length != len(data):
        issues.append(f"glb_length_mismatch:{length}!={len(data)}")

    chunks = _read_chunks(data, issues)
    if not chunks or chunks[0][0] != CHUNK_JSON:
        issues.append("glb_first_chunk_not_json")
        return issues

    try:
        gltf = json.loads(chunks[0][1].decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        issues.append("glb_json_invalid")
        return issues
    if not isinstance(gltf, dict):
        issues.append("glb_json_not_object")
        return issues

    bin_chunk = next((body for ctype, body in chunks[1:] if ctype == CHUNK_BIN), None)
    issues.extend(_validate_document(gltf, bin_chunk))
    return issues


def _read_chunks(data: bytes, issues: list[str]) -> list[tuple[int, bytes]]:
    chunks: list[tuple[int, bytes]] = []
    offset = 12
    while offset + 8 <= len(data):
        chunk_len, chunk_type = struct.unpack_from("<II", data, offset)
        if chunk_len % 4:
            issues.append(f"glb_chunk_not_aligned:{offset}")
        body = data[offset + 8 : offset + 8 + chunk_len]
        if len(body) != chunk_len:
            issues.append(f"glb_chunk_truncated:{offset}")
            break
        chunks.append((chunk_type, body))
        offset += 8 + chunk_len
    if offset != len(data):
        issues.append("glb_trailing_bytes")
    return chunks


def _validate_document(gltf: dict[str, Any], bin_chunk: bytes | None) -> list[str]:
    issues: list[str] = []
    if (gltf.get("asset") or {}).get("version") != "2.0":
        issues.append("asset_version_missing")

    used = set(gltf.get("extensionsUsed", []))
    for name in gltf.get("extensionsRequired", []):
        if name not in used:
            issues.append(f"extension_required_not_used:{name}")

    # --- buffers ---
    buffers = gltf.get("buffers", [])
    buffer_sizes: list[int] = []
    for i, buf in enumerate(buffers):
        size = int(buf.get("byteLength", -1))
        if size < 0:
            issues.append(f"buffer_{i}_no_length")
        if i == 0 and "uri" not in buf:
            if bin_chunk is None:
                issues.append("buffer_0_missing_bin_chunk")
            elif size > len(bin_chunk):
                issues.append("buffer_0_exceeds_bin_chunk")
        buffer_sizes.append(size)

    # --- bufferViews ---
    views = gltf.get("bufferViews", [])
    for i, view in enumerate(views):
        b = view.get("buffer")
        if not isinstance(b, int) or not 0 <= b < len(buffers):
            issues.append(f"buffer_view_{i}_bad_buffer")
            continue
        end = int(view.get("byteOffset", 0)) + int(view.get("byteLength", 0))
        if end > buffer_sizes[b]:
            issues.append(f"buffer_view_{i}_out_of_bounds")

    # --- accessors ---
    accessors = gltf.get("accessors", [])
    draco_accessors = _draco_accessor_ids(gltf)
    for i, acc in enumerate(accessors):
        dtype = COMPONENT_DTYPES.get(acc.get("componentType"))
        n_comp = TYPE_SIZES.get(acc.get("type"))
        count = acc.get("count")
        if dtype is None or n_comp is None:
            issues.append(f"accessor_{i}_bad_type")
            continue
        if not isinstance(count, int) or count < 1:
            issues.append(f"accessor_{i}_bad_count")
            continue
        if "bufferView" not in acc:
            if i not in draco_accessors and "sparse" not in acc:
                issues.append(f"accessor_{i}_no_data")
            continue
        v = acc["bufferView"]
        if not isinstance(v, int) or not 0 <= v < len(views):
            issues.append(f"accessor_{i}_bad_buffer_view")
            continue
        elem = dtype.itemsize * n_comp
        stride = int(views[v].get("byteStride", 0)) or elem
        needed = int(acc.get("byteOffset", 0)) + stride * (count - 1) + elem
        if needed > int(views[v].get("byteLength", 0)):
            issues.append(f"accessor_{i}_out_of_bounds")

    # --- meshes ---
    for m, mesh in enumerate(gltf.get("meshes", [])):
        prims = mesh.get("primitives") or []
        if not prims:
            issues.append(f"mesh_{m}_no_primitives")
        for p, prim in enumerate(prims):
            issues.extend(_validate_primitive(f"mesh_{m}_primitive_{p}", prim, gltf, used))

    # --- nodes / scenes ---
    nodes = gltf.get("nodes", [])
    meshes = gltf.get("meshes", [])
    for n, node in enumerate(nodes):
        if "mesh" in node and not 0 <= node["mesh"] < len(meshes):
            issues.append(f"node_{n}_bad_mesh")
        for child in node.get("children", []):
            if not 0 <= child < len(nodes):
                issues.append(f"node_{n}_bad_child")
    scenes = gltf.get("scenes", [])
    for s, scene in enumerate(scenes):
        for node_idx in scene.get("nodes", []):
            if not 0 <= node_idx < len(nodes):
                issues.append(f"scene_{s}_bad_node")
    if "scene" in gltf and not 0 <= gltf["scene"] < len(scenes):
        issues.append("default_scene_missing")
    return issues


def _validate_primitive(
    where: str, prim: dict[str, Any], gltf: dict[str, Any], used_ext: set[str]
) -> list[str]:
    issues: list[str] = []
    accessors = gltf.get("accessors", [])
    attrs = prim.get("attributes") or {}
    if "POSITION" not in attrs:
        issues.append(f"{where}_no_position")
    for name, idx in attrs.items():
        if not isinstance(idx, int) or not 0 <= idx < len(accessors):
            issues.append(f"{where}_bad_attribute:{name}")
    pos = attrs.get("POSITION")
    if isinstance(pos, int) and 0 <= pos < len(accessors):
        if "min" not in accessors[pos] or "max" not in accessors[pos]:
            issues.append(f"{where}_position_no_bounds")
    if "indices" in prim and not 0 <= prim["indices"] < len(accessors):
        issues.append(f"{where}_bad_indices")

    draco = (prim.get("extensions") or {}).get(DRACO_EXTENSION)
    if draco is not None:
        if DRACO_EXTENSION not in used_ext:
            issues.append(f"{where}_draco_not_declared")
        v = draco.get("bufferView")
        if not isinstance(v, int) or not 0 <= v < len(gltf.get("bufferViews", [])):
            issues.append(f"{where}_draco_bad_buffer_view")
        for name in (draco.get("attributes") or {}):
            if name not in attrs:
                issues.append(f"{where}_draco_unknown_attribute:{name}")
    return issues


def _draco_accessor_ids(gltf: dict[str, Any]) -> set[int]:
    ids: set[int] = set()
    for mesh in gltf.get("meshes", []):
        for prim in mesh.get("primitives", []):
            if DRACO_EXTENSION not in (prim.get("extensions") or {}):
                continue
            ids.update(v for v in (prim.get("attributes") or {}).values() if isinstance(v, int))
            if isinstance(prim.get("indices"), int):
                ids.add(prim["indices"])
    return ids
