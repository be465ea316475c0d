"""
Контракт очереди задач обработки файлов.

Две реализации:
- RedisJobQueue (durable, QUEUE_MODE=redis)
- InMemoryJobQueue (в процессе, QUEUE_MODE=inline: тесты и локальная разработка)
"""

from __future__ import annotations

from typing import Any, Protocol

from attachment_pipeline.domain.enums import FileCategory

from .tasks import Job, JobOutcome, JobPayload, PurgeResult, QueueStats


class JobQueue(Protocol):
    lease_ttl_sec: float

    def enqueue(self, category: FileCategory | str, payload: JobPayload) -> str: ...

    def reserve(self, worker_id: str) -> Job | None: ...

    def set_progress(self, job_id: str, pct: int, *, worker_id: str) -> bool:
        """
        Только держатель lease. False — задача уже не наша (lease истёк / commit).
        """
        ...

    def complete(
        self, job_id: str, result: dict[str, Any], *, worker_id: str | None = None
    ) -> JobOutcome | None: ...

    def fail(
        self,
        job_id: str,
        error: dict[str, Any],
        *,
        worker_id: str | None = None,
        retryable: bool = True,
    ) -> JobOutcome | None: ...

    def stats(self) -> QueueStats: ...

    def get_job(self, job_id: str) -> Job | None: ...

    def get_job_status(self, job_id: str) -> dict[str, Any] | None: ...

    def promote_due(self) -> int: ...

    def reclaim_expired_leases(self) -> list[JobOutcome]: ...

    def purge_expired(self) -> PurgeResult: ...

    def clean(self) -> int: ...

    def wait_for_work(self, timeout: float) -> bool: ...
