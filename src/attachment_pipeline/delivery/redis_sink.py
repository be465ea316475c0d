"""
ResultSink поверх Redis.

- поля вложения пишутся в hash msg:<message_id> (сервис чата читает их оттуда)
- realtime-событие публикуется в pub/sub канал room:<room_id>
"""

from __future__ import annotations

import json
from typing import Any

import redis

from attachment_pipeline.common.logging import get_project_logger

log = get_project_logger()


class RedisResultSink:
    def __init__(
        self,
        client: redis.Redis,
        *,
        message_prefix: str = "msg",
        room_channel_prefix: str = "room",
    ) -> None:
        self._r = client
        self.message_prefix = message_prefix
        self.room_channel_prefix = room_channel_prefix

    def update_message(self, message_id: str, fields: dict[str, Any]) -> None:
        mapping = {
            k: json.dumps(v, ensure_ascii=False) if isinstance(v, (list, dict)) else str(v)
            for k, v in fields.items()
        }
        self._r.hset(f"{self.message_prefix}:{message_id}", mapping=mapping)

    def publish(self, room_id: str, event: dict[str, Any]) -> None:
        receivers = self._r.publish(
            f"{self.room_channel_prefix}:{room_id}", json.dumps(event, ensure_ascii=False)
        )
        log.debug(
            "room_event_published",
            extra={"payload": {"room_id": room_id, "receivers": receivers}},
        )
