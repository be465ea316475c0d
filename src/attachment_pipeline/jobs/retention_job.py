"""
Фоновая job ретеншна.

Назначение:
- удалять завершённые задачи старше окна хранения (и сверх лимита по количеству)
- удалять failed-задачи старше своего окна
"""

from attachment_pipeline.common.logging import get_project_logger
from attachment_pipeline.queue.base import JobQueue
from attachment_pipeline.queue.tasks import PurgeResult

log = get_project_logger()


def run(queue: JobQueue) -> PurgeResult:
    log.info("retention_job_started")
    res = queue.purge_expired()
    log.info(
        "retention_job_finished",
        extra={"payload": {"completed_removed": res.completed, "failed_removed": res.failed}},
    )
    return res
