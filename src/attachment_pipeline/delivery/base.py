"""
Базовые интерфейсы доставки результата обработки (ResultSink).

Назначение:
- записать результат на исходное сообщение чата
- опубликовать realtime-обновление в комнату сообщения (best effort)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

MESSAGE_UPDATE_EVENT = "message.update"


@dataclass
class MessageUpdate:
    """
    Поля вложения, которые пишутся на сообщение.
    None-поля не передаются (не затираем то, что уже есть).
    """

    processing_status: str
    thumbnail_url: str | None = None
    render_url: str | None = None
    error: str | None = None
    warnings: list[str] | None = None

    def to_fields(self) -> dict[str, Any]:
        fields: dict[str, Any] = {"processing_status": self.processing_status}
        if self.thumbnail_url is not None:
            fields["thumbnail_url"] = self.thumbnail_url
        if self.render_url is not None:
            fields["render_url"] = self.render_url
        if self.error is not None:
            fields["error"] = self.error
        if self.warnings:
            fields["warnings"] = list(self.warnings)
        return fields


class ResultSink(Protocol):
    """
    Контракт приёмника результатов.
    """

    def update_message(self, message_id: str, fields: dict[str, Any]) -> None: ...

    def publish(self, room_id: str, event: dict[str, Any]) -> None: ...
