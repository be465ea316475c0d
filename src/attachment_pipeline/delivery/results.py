"""
Утилиты для работы с результатами обработки.

Назначение:
- единое представление результата процессора для очереди / сообщения
- сборка realtime-события message.update
"""

from __future__ import annotations

from typing import Any

from attachment_pipeline.domain.enums import ProcessingStatus

from .base import MESSAGE_UPDATE_EVENT, MessageUpdate


def completed_update(
    *,
    thumbnail_url: str | None = None,
    render_url: str | None = None,
    warnings: list[str] | None = None,
) -> MessageUpdate:
    return MessageUpdate(
        processing_status=ProcessingStatus.completed.value,
        thumbnail_url=thumbnail_url,
        render_url=render_url,
        warnings=warnings,
    )


def skipped_update() -> MessageUpdate:
    return MessageUpdate(processing_status=ProcessingStatus.skipped.value)


def failed_update(error: str) -> MessageUpdate:
    return MessageUpdate(processing_status=ProcessingStatus.failed.value, error=error)


def build_event(message_id: str, fields: dict[str, Any]) -> dict[str, Any]:
    return {
        "schema_version": "v1",
        "event_type": MESSAGE_UPDATE_EVENT,
        "message_id": message_id,
        **fields,
    }
