"""
glTF-утилиты для конвертации 3D-моделей.

Этапы:
- convert_to_gltf(): меш (STL/OBJ/PLY) → model.gltf + бинарные буферы во временной папке
- load_gltf_document(): читаем описание сцены и буферы обратно
- draco_compress(): сжатие геометрии (KHR_draco_mesh_compression)
- pack_glb(): описание + буферы → один GLB-контейнер
"""

from __future__ import annotations

import base64
import copy
import json
import struct
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import DracoPy
import numpy as np
import trimesh
from trimesh.exchange.gltf import export_gltf

from attachment_pipeline.common.errors import ErrCode, PermanentError
from attachment_pipeline.common.logging import get_project_logger

log = get_project_logger()

GLB_MAGIC = b"glTF"
GLB_VERSION = 2
CHUNK_JSON = 0x4E4F534A
CHUNK_BIN = 0x004E4942
DRACO_EXTENSION = "KHR_draco_mesh_compression"

COMPONENT_DTYPES: dict[int, np.dtype] = {
    5120: np.dtype(np.int8),
    5121: np.dtype(np.uint8),
    5122: np.dtype(np.int16),
    5123: np.dtype(np.uint16),
    5125: np.dtype(np.uint32),
    5126: np.dtype(np.float32),
}
TYPE_SIZES: dict[str, int] = {
    "SCALAR": 1,
    "VEC2": 2,
    "VEC3": 3,
    "VEC4": 4,
    "MAT2": 4,
    "MAT3": 9,
    "MAT4": 16,
}
_TRIANGLES = 4


@dataclass
class GltfDocument:
    """
    Промежуточное описание сцены: JSON glTF + байты буферов (по индексу buffers[]).
    """

    gltf: dict[str, Any]
    buffers: list[bytes]

    def clone(self) -> GltfDocument:
        return GltfDocument(gltf=copy.deepcopy(self.gltf), buffers=list(self.buffers))


# =============================================================================
# КОНВЕРТАЦИЯ
# =============================================================================
def convert_to_gltf(source_path: Path, out_dir: Path) -> Path:
    """
    Загружает меш и пишет glTF (JSON + .bin) в out_dir. Возвращает путь к .gltf.
    Ошибка библиотеки конвертации → PermanentError.
    """
    file_type = source_path.suffix.lower().lstrip(".")
    try:
        scene = trimesh.load(str(source_path), file_type=file_type, force="scene")
    except Exception as e:
        raise PermanentError(
            "Не удалось прочитать 3D-модель",
            ErrCode.CONVERSION_FAILED,
            {"file_type": file_type, "err": str(e)[:200]},
        ) from e

    if not getattr(scene, "geometry", None):
        raise PermanentError(
            "3D-модель не содержит геометрии", ErrCode.CORRUPT_FILE, {"file_type": file_type}
        )

    try:
        files = export_gltf(scene, include_normals=True)
    except Exception as e:
        raise PermanentError(
            "Не удалось конвертировать 3D-модель в glTF",
            ErrCode.CONVERSION_FAILED,
            {"file_type": file_type, "err": str(e)[:200]},
        ) from e

    gltf_path: Path | None = None
    for name, data in files.items():
        p = out_dir / Path(name).name
        p.write_bytes(data)
        if p.suffix == ".gltf":
            gltf_path = p
    if gltf_path is None:
        raise PermanentError("glTF-экспорт не вернул описание сцены", ErrCode.CONVERSION_FAILED)
    return gltf_path


def load_gltf_document(gltf_path: Path) -> GltfDocument:
    gltf = json.loads(gltf_path.read_text(encoding="utf-8"))
    buffers: list[bytes] = []
    for buf in gltf.get("buffers", []):
        uri = buf.get("uri") or ""
        if uri.startswith("data:"):
            buffers.append(base64.b64decode(uri.split(",", 1)[1]))
        elif uri:
            buffers.append((gltf_path.parent / uri).read_bytes())
        else:
            buffers.append(b"")
    return GltfDocument(gltf=gltf, buffers=buffers)


# =============================================================================
# ЧТЕНИЕ ACCESSOR'ОВ
# =============================================================================
def read_accessor(doc: GltfDocument, index: int) -> np.ndarray:
    """
    Данные accessor'а как массив (count, n_components).
    """
    acc = doc.gltf["accessors"][index]
    dtype = COMPONENT_DTYPES[acc["componentType"]]
    n_comp = TYPE_SIZES[acc["type"]]
    count = int(acc["count"])
    view = doc.gltf["bufferViews"][acc["bufferView"]]
    raw = doc.buffers[view.get("buffer", 0)]
    start = int(view.get("byteOffset", 0)) + int(acc.get("byteOffset", 0))
    elem_size = dtype.itemsize * n_comp
    stride = int(view.get("byteStride", 0)) or elem_size

    if stride == elem_size:
        arr = np.frombuffer(raw, dtype=dtype, count=count * n_comp, offset=start)
        return arr.reshape(count, n_comp)

    rows = [
        np.frombuffer(raw, dtype=dtype, count=n_comp, offset=start + i * stride)
        for i in range(count)
    ]
    return np.vstack(rows) if rows else np.zeros((0, n_comp), dtype=dtype)


# =============================================================================
# СЖАТИЕ (DRACO)
# =============================================================================
def draco_compress(
    doc: GltfDocument, *, quantization_bits: int = 14, compression_level: int = 7
) -> GltfDocument:
    """
    Сжимает треугольные примитивы через Draco. Исходный документ не меняется.

    В сжатый примитив попадают только POSITION + индексы; прочие атрибуты
    примитива отбрасываются (нормали вьюер восстановит сам).
    """
    out = doc.clone()
    gltf = out.gltf
    compressed = 0

    for mesh in gltf.get("meshes", []):
        for prim in mesh.get("primitives", []):
            attrs = prim.get("attributes", {})
            if prim.get("mode", _TRIANGLES) != _TRIANGLES:
                continue
            if "POSITION" not in attrs or "indices" not in prim:
                continue

            points = read_accessor(out, attrs["POSITION"]).astype(np.float32)
            faces = read_accessor(out, prim["indices"]).astype(np.uint32).reshape(-1, 3)
            blob = DracoPy.encode(
                points,
                faces=faces,
                quantization_bits=quantization_bits,
                compression_level=compression_level,
            )
            # Draco может переупорядочить/схлопнуть вершины: счётчики берём из декода
            decoded = DracoPy.decode(blob)
            dec_points = np.asarray(decoded.points, dtype=np.float32).reshape(-1, 3)
            dec_faces = np.asarray(decoded.faces).reshape(-1, 3)

            view_idx = _append_view(out, bytes(blob))
            pos_idx = _append_accessor(
                gltf,
                {
                    "componentType": 5126,
                    "type": "VEC3",
                    "count": int(dec_points.shape[0]),
                    "min": dec_points.min(axis=0).tolist(),
                    "max": dec_points.max(axis=0).tolist(),
                },
            )
            idx_idx = _append_accessor(
                gltf,
                {"componentType": 5125, "type": "SCALAR", "count": int(dec_faces.size)},
            )
            prim["attributes"] = {"POSITION": pos_idx}
            prim["indices"] = idx_idx
            prim.setdefault("extensions", {})[DRACO_EXTENSION] = {
                "bufferView": view_idx,
                "attributes": {"POSITION": 0},
            }
            compressed += 1

    if compressed:
        for key in ("extensionsUsed", "extensionsRequired"):
            names = gltf.setdefault(key, [])
            if DRACO_EXTENSION not in names:
                names.append(DRACO_EXTENSION)
        _drop_unused(out)

    log.info(
        "model3d_draco_compressed",
        extra={"payload": {"primitives": compressed, "quantization_bits": quantization_bits}},
    )
    return out


def _append_view(doc: GltfDocument, data: bytes) -> int:
    doc.buffers.append(data)
    doc.gltf.setdefault("buffers", []).append({"byteLength": len(data)})
    views = doc.gltf.setdefault("bufferViews", [])
    views.append({"buffer": len(doc.buffers) - 1, "byteOffset": 0, "byteLength": len(data)})
    return len(views) - 1


def _append_accessor(gltf: dict[str, Any], accessor: dict[str, Any]) -> int:
    accessors = gltf.setdefault("accessors", [])
    accessors.append(accessor)
    return len(accessors) - 1


def _drop_unused(doc: GltfDocument) -> None:
    """
    Убирает accessor'ы и bufferView, на которые больше никто не ссылается,
    и собирает оставшиеся view в один буфер.
    """
    gltf = doc.gltf

    # --- accessors ---
    used_acc: set[int] = set()
    for mesh in gltf.get("meshes", []):
        for prim in mesh.get("primitives", []):
            used_acc.update(prim.get("attributes", {}).values())
            if "indices" in prim:
                used_acc.add(prim["indices"])
            for target in prim.get("targets", []):
                used_acc.update(target.values())
    for skin in gltf.get("skins", []):
        if "inverseBindMatrices" in skin:
            used_acc.add(skin["inverseBindMatrices"])
    for anim in gltf.get("animations", []):
        for sampler in anim.get("samplers", []):
            used_acc.update((sampler["input"], sampler["output"]))

    acc_map = {old: new for new, old in enumerate(sorted(used_acc))}
    gltf["accessors"] = [gltf["accessors"][old] for old in sorted(used_acc)]
    for mesh in gltf.get("meshes", []):
        for prim in mesh.get("primitives", []):
            prim["attributes"] = {k: acc_map[v] for k, v in prim.get("attributes", {}).items()}
            if "indices" in prim:
                prim["indices"] = acc_map[prim["indices"]]
            if "targets" in prim:
                prim["targets"] = [{k: acc_map[v] for k, v in t.items()} for t in prim["targets"]]
    for skin in gltf.get("skins", []):
        if "inverseBindMatrices" in skin:
            skin["inverseBindMatrices"] = acc_map[skin["inverseBindMatrices"]]
    for anim in gltf.get("animations", []):
        for sampler in anim.get("samplers", []):
            sampler["input"] = acc_map[sampler["input"]]
            sampler["output"] = acc_map[sampler["output"]]

    # --- bufferViews ---
    used_views: set[int] = set()
    for acc in gltf["accessors"]:
        if "bufferView" in acc:
            used_views.add(acc["bufferView"])
    for image in gltf.get("images", []):
        if "bufferView" in image:
            used_views.add(image["bufferView"])
    for mesh in gltf.get("meshes", []):
        for prim in mesh.get("primitives", []):
            ext = prim.get("extensions", {}).get(DRACO_EXTENSION)
            if ext:
                used_views.add(ext["bufferView"])

    views = gltf.get("bufferViews", [])
    merged = bytearray()
    new_views: list[dict[str, Any]] = []
    view_map: dict[int, int] = {}
    for old in sorted(used_views):
        view = dict(views[old])
        raw = doc.buffers[view.get("buffer", 0)]
        start = int(view.get("byteOffset", 0))
        chunk = raw[start : start + int(view["byteLength"])]
        merged.extend(b"\x00" * (_pad4(len(merged)) - len(merged)))
        view["buffer"] = 0
        view["byteOffset"] = len(merged)
        merged.extend(chunk)
        view_map[old] = len(new_views)
        new_views.append(view)

    gltf["bufferViews"] = new_views
    for acc in gltf["accessors"]:
        if "bufferView" in acc:
            acc["bufferView"] = view_map[acc["bufferView"]]
    for image in gltf.get("images", []):
        if "bufferView" in image:
            image["bufferView"] = view_map[image["bufferView"]]
    for mesh in gltf.get("meshes", []):
        for prim in mesh.get("primitives", []):
            ext = prim.get("extensions", {}).get(DRACO_EXTENSION)
            if ext:
                ext["bufferView"] = view_map[ext["bufferView"]]

    doc.buffers = [bytes(merged)]
    gltf["buffers"] = [{"byteLength": len(merged)}]


# =============================================================================
# УПАКОВКА GLB
# =============================================================================
def _pad4(n: int) -> int:
    return (n + 3) & ~3


def pack_glb(doc: GltfDocument) -> bytes:
    """
    Собирает самодостаточный GLB: все буферы склеиваются в BIN-чанк,
    uri у буферов убираются.
    """
    gltf = copy.deepcopy(doc.gltf)
    binary = bytearray()
    offsets: list[int] = []
    for data in doc.buffers:
        binary.extend(b"\x00" * (_pad4(len(binary)) - len(binary)))
        offsets.append(len(binary))
        binary.extend(data)

    for view in gltf.get("bufferViews", []):
        src = view.get("buffer", 0)
        view["byteOffset"] = int(view.get("byteOffset", 0)) + offsets[src]
        view["buffer"] = 0

    if binary:
        gltf["buffers"] = [{"byteLength": len(binary)}]
    else:
        gltf.pop("buffers", None)

    json_bytes = json.dumps(gltf, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    json_bytes += b" " * (_pad4(len(json_bytes)) - len(json_bytes))
    bin_bytes = bytes(binary) + b"\x00" * (_pad4(len(binary)) - len(binary))

    total = 12 + 8 + len(json_bytes) + (8 + len(bin_bytes) if bin_bytes else 0)
    out = bytearray()
    out += struct.pack("<4sII", GLB_MAGIC, GLB_VERSION, total)
    out += struct.pack("<II", len(json_bytes), CHUNK_JSON)
    out += json_bytes
    if bin_bytes:
        out += struct.pack("<II", len(bin_bytes), CHUNK_BIN)
        out += bin_bytes
    return bytes(out)
