"""
Процессор 3D-моделей: превью-рендер в GLB.

Этапы на задачу:
- гейт по расширению: .stl/.obj/.ply обрабатываем, остальное (.dxd и т.п.) → skipped
- исходник → временная папка задачи
- конвертация в glTF (trimesh)
- Draco-сжатие, если исходник больше порога
- упаковка в GLB и структурная валидация
- невалидный сжатый GLB → перепаковка без сжатия (с предупреждением)
- временная папка удаляется на любом пути выхода
"""

from __future__ import annotations

import tempfile
from pathlib import Path, PurePath

from attachment_pipeline.common.errors import ErrCode, MeshValidationError, PermanentError
from attachment_pipeline.common.logging import get_project_logger
from attachment_pipeline.domain.enums import DerivedKind, FileCategory
from attachment_pipeline.domain.file_types import file_extension
from attachment_pipeline.queue.tasks import JobPayload

from .base import BaseProcessor, DerivedArtifact, DerivedResult
from .glb_validator import validate_glb
from .gltf import GltfDocument, convert_to_gltf, draco_compress, load_gltf_document, pack_glb

log = get_project_logger()

CONVERTIBLE_EXTENSIONS = frozenset({".stl", ".obj", ".ply"})
GLB_CONTENT_TYPE = "model/gltf-binary"


class Model3DProcessor(BaseProcessor):
    category = FileCategory.model3d

    def __init__(
        self,
        *,
        compress_threshold_bytes: int = 5 * 1024 * 1024,
        quantization_bits: int = 14,
        scratch_root: str | Path | None = None,
    ) -> None:
        self.compress_threshold_bytes = compress_threshold_bytes
        self.quantization_bits = quantization_bits
        self.scratch_root = str(scratch_root) if scratch_root else None

    def skip_reason(self, payload: JobPayload) -> str | None:
        ext = file_extension(payload.original_filename)
        if ext not in CONVERTIBLE_EXTENSIONS:
            return f"unsupported_model_extension:{ext or 'none'}"
        return None

    def process(self, source: bytes, payload: JobPayload) -> DerivedResult:
        if not source:
            raise PermanentError(
                "Пустой файл 3D-модели",
                ErrCode.CORRUPT_FILE,
                {"filename": payload.original_filename},
            )

        ext = file_extension(payload.original_filename)
        stem = PurePath(payload.original_filename or "model").stem or "model"

        with tempfile.TemporaryDirectory(prefix="model3d_", dir=self.scratch_root) as tmp:
            work = Path(tmp)
            src_path = work / f"source{ext}"
            src_path.write_bytes(source)

            gltf_path = convert_to_gltf(src_path, work)
            doc = load_gltf_document(gltf_path)
            log.info(
                "model3d_converted",
                extra={"payload": {"message_id": payload.message_id, "source_size": len(source)}},
            )

            warnings: list[str] = []
            compressed_doc = self._maybe_compress(doc, len(source), payload, warnings)
            glb, fallback_used = self._pack_checked(doc, compressed_doc, payload, warnings)

        return DerivedResult.completed(
            DerivedArtifact(
                data=glb,
                suggested_name=f"{stem}.glb",
                kind=DerivedKind.render,
                content_type=GLB_CONTENT_TYPE,
            ),
            warnings=warnings,
            details={
                "compressed": compressed_doc is not None and not fallback_used,
                "fallback_used": fallback_used,
                "source_size": len(source),
                "glb_size": len(glb),
            },
        )

    def _maybe_compress(
        self, doc: GltfDocument, source_size: int, payload: JobPayload, warnings: list[str]
    ) -> GltfDocument | None:
        if source_size <= self.compress_threshold_bytes:
            return None
        try:
            return draco_compress(doc, quantization_bits=self.quantization_bits)
        except Exception as e:
            # без сжатия модель всё равно пригодна для просмотра
            log.warning(
                "model3d_compression_failed",
                extra={"payload": {"message_id": payload.message_id, "err": str(e)[:200]}},
            )
            warnings.append("compression_failed")
            return None

    def _pack_checked(
        self,
        doc: GltfDocument,
        compressed_doc: GltfDocument | None,
        payload: JobPayload,
        warnings: list[str],
    ) -> tuple[bytes, bool]:
        """
        Упаковка + валидация. Возвращает (glb, fallback_used).
        """
        glb = pack_glb(compressed_doc or doc)
        try:
            _ensure_valid(glb)
            return glb, False
        except MeshValidationError as e:
            log.warning(
                "model3d_validation_failed",
                extra={
                    "payload": {
                        "message_id": payload.message_id,
                        "compressed": compressed_doc is not None,
                        "issues": e.issues[:10],
                    }
                },
            )
            if compressed_doc is None:
                warnings.append("validation_failed")
                return glb, False

        warnings.append("compressed_output_invalid")
        fallback = pack_glb(doc)
        issues = validate_glb(fallback)
        if issues:
            warnings.append("validation_failed")
            log.warning(
                "model3d_fallback_invalid",
                extra={"payload": {"message_id": payload.message_id, "issues": issues[:10]}},
            )
        return fallback, True


def _ensure_valid(glb: bytes) -> None:
    issues = validate_glb(glb)
    if issues:
        raise MeshValidationError(issues)
