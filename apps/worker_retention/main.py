"""
Worker Retention.

Назначение:
- периодически запускать retention_job над очередью вложений
- чистить completed/failed задачи по окнам хранения
"""

from __future__ import annotations

import time

from attachment_pipeline.common.config import get_settings
from attachment_pipeline.common.logging import get_project_logger, setup_logging
from attachment_pipeline.jobs.retention_job import run as run_retention
from attachment_pipeline.queue.dispatcher import build_job_queue

log = get_project_logger()


def main() -> None:
    setup_logging()
    settings = get_settings()
    interval_sec = max(5, int(settings.retention_interval_sec))
    queue = build_job_queue(settings)

    log.info(
        "worker_retention_started",
        extra={
            "payload": {
                "interval_sec": interval_sec,
                "completed_sec": settings.retention_completed_sec,
                "completed_keep": settings.retention_completed_keep,
                "failed_sec": settings.retention_failed_sec,
            }
        },
    )

    while True:
        try:
            run_retention(queue)
        except Exception as e:
            log.error("worker_retention_error", extra={"payload": {"err": str(e)[:300]}})
        time.sleep(interval_sec)


if __name__ == "__main__":
    main()
