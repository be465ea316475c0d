"""
Базовый интерфейс процессоров файлов.

Назначение:
- единый контракт process(source_bytes, payload) -> DerivedResult
- процессор не знает про очередь и хранилище: производные байты возвращает,
  сохраняет их воркер
- skip_reason(): гейт до загрузки исходника (no-op без чтения байтов)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

from attachment_pipeline.domain.enums import DerivedKind, FileCategory, ProcessingStatus
from attachment_pipeline.queue.tasks import JobPayload


@dataclass
class DerivedArtifact:
    data: bytes
    suggested_name: str
    kind: DerivedKind
    content_type: str


@dataclass
class DerivedResult:
    status: ProcessingStatus
    artifact: DerivedArtifact | None = None
    warnings: list[str] = field(default_factory=list)
    details: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def completed(
        cls,
        artifact: DerivedArtifact | None = None,
        *,
        warnings: list[str] | None = None,
        details: dict[str, Any] | None = None,
    ) -> DerivedResult:
        return cls(
            status=ProcessingStatus.completed,
            artifact=artifact,
            warnings=list(warnings or []),
            details=dict(details or {}),
        )

    @classmethod
    def skipped(cls, reason: str) -> DerivedResult:
        return cls(status=ProcessingStatus.skipped, details={"reason": reason})


class Processor(Protocol):
    category: FileCategory

    def skip_reason(self, payload: JobPayload) -> str | None: ...

    def process(self, source: bytes, payload: JobPayload) -> DerivedResult: ...


class BaseProcessor:
    category: FileCategory

    def skip_reason(self, payload: JobPayload) -> str | None:
        return None

    def process(self, source: bytes, payload: JobPayload) -> DerivedResult:  # pragma: no cover
        raise NotImplementedError
