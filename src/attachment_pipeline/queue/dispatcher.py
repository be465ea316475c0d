"""
Диспетчер очереди.

Назначение:
- сборка нужного бэкенда очереди по QUEUE_MODE (redis|inline)
- enqueue_upload(): точка входа для upload-эндпоинта
  (категория определяется по MIME/расширению, ответ сразу, без обработки)
"""

from __future__ import annotations

from attachment_pipeline.common.config import Settings, get_settings
from attachment_pipeline.common.errors import PermanentError
from attachment_pipeline.common.logging import get_project_logger
from attachment_pipeline.domain.file_types import detect_category

from .base import JobQueue
from .memory import InMemoryJobQueue
from .retry import RetentionPolicy, RetryPolicy
from .tasks import JobPayload

log = get_project_logger()


def build_job_queue(settings: Settings | None = None) -> JobQueue:
    """
    Очередь с зависимостями из настроек. Вызывается один раз на старте процесса,
    дальше объект передаётся явно (в пул воркеров, в роутеры).
    """
    s = settings or get_settings()
    policy = RetryPolicy.from_settings(s)
    retention = RetentionPolicy.from_settings(s)
    mode = (s.queue_mode or "").strip().lower()

    if mode == "inline":
        log.info("job_queue_ready", extra={"payload": {"mode": "inline"}})
        return InMemoryJobQueue(
            policy=policy, retention=retention, lease_ttl_sec=float(s.lease_ttl_sec)
        )

    from .redis import redis_client
    from .redis_queue import RedisJobQueue

    log.info("job_queue_ready", extra={"payload": {"mode": "redis", "prefix": s.queue_prefix}})
    return RedisJobQueue(
        redis_client(),
        prefix=s.queue_prefix,
        policy=policy,
        retention=retention,
        lease_ttl_sec=float(s.lease_ttl_sec),
    )


def enqueue_upload(
    queue: JobQueue,
    *,
    message_id: str,
    room_id: str,
    source_locator: str,
    original_filename: str,
    mime_type: str | None = None,
) -> str:
    """
    Поставить задачу обработки загруженного вложения.

    Бросает PermanentError, если тип файла не поддерживается.
    """
    category = detect_category(mime_type, original_filename)
    if category is None:
        raise PermanentError(
            "Неподдерживаемый тип файла",
            details={"mime_type": mime_type, "filename": original_filename},
        )
    payload = JobPayload(
        message_id=message_id,
        room_id=room_id,
        source_locator=source_locator,
        original_filename=original_filename,
        mime_type=mime_type,
    )
    return queue.enqueue(category, payload)
