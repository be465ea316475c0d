"""
Очередь в памяти процесса (QUEUE_MODE=inline).

Назначение:
- тесты и локальная разработка без Redis
- те же гарантии, что у Redis-версии, в пределах одного процесса:
  приоритет → FIFO, lease, backoff, ретеншн

Все мутации под одним threading.Condition.
"""

from __future__ import annotations

import heapq
import itertools
import threading
from collections.abc import Callable
from typing import Any

from attachment_pipeline.common.errors import ErrCode, TransientError
from attachment_pipeline.common.ids import new_job_id
from attachment_pipeline.common.logging import get_project_logger
from attachment_pipeline.common.time import epoch_now
from attachment_pipeline.domain.enums import FileCategory, JobState
from attachment_pipeline.domain.file_types import priority_for

from .retry import RetentionPolicy, RetryPolicy
from .tasks import Job, JobOutcome, JobPayload, PurgeResult, QueueStats

log = get_project_logger()


class InMemoryJobQueue:
    def __init__(
        self,
        *,
        policy: RetryPolicy | None = None,
        retention: RetentionPolicy | None = None,
        lease_ttl_sec: float = 600,
        clock: Callable[[], float] = epoch_now,
    ) -> None:
        self.policy = policy or RetryPolicy()
        self.retention = retention or RetentionPolicy()
        self.lease_ttl_sec = lease_ttl_sec
        self._clock = clock
        self._cond = threading.Condition()
        self._jobs: dict[str, Job] = {}
        self._waiting: list[tuple[int, int, str]] = []
        self._seq = itertools.count(1)

    # -------------------------------------------------------------------------
    # Постановка / резервирование
    # -------------------------------------------------------------------------
    def enqueue(self, category: FileCategory | str, payload: JobPayload) -> str:
        category = FileCategory(category)
        with self._cond:
            job = Job(
                id=new_job_id(),
                category=category,
                payload=payload,
                priority=priority_for(category),
                seq=next(self._seq),
                created_at=self._clock(),
                max_attempts=self.policy.max_attempts,
            )
            self._jobs[job.id] = job
            heapq.heappush(self._waiting, (job.priority, job.seq, job.id))
            self._cond.notify()
        log.info(
            "job_enqueued",
            extra={
                "payload": {
                    "job_id": job.id,
                    "category": category.value,
                    "priority": job.priority,
                    "message_id": payload.message_id,
                }
            },
        )
        return job.id

    def reserve(self, worker_id: str) -> Job | None:
        with self._cond:
            now = self._clock()
            self._promote_due_locked(now)
            while self._waiting:
                _, _, job_id = heapq.heappop(self._waiting)
                job = self._jobs.get(job_id)
                # запись могла быть удалена/уже взята, пропускаем устаревший элемент кучи
                if job is None or job.state != JobState.waiting:
                    continue
                job.mark_reserved(worker_id, now=now, lease_ttl_sec=self.lease_ttl_sec)
                return _copy(job)
        return None

    def set_progress(self, job_id: str, pct: int, *, worker_id: str) -> bool:
        with self._cond:
            job = self._jobs.get(job_id)
            if job is None or not job.holds_lease(worker_id):
                return False
            job.set_progress(pct)
            return True

    # -------------------------------------------------------------------------
    # Завершение
    # -------------------------------------------------------------------------
    def complete(
        self, job_id: str, result: dict[str, Any], *, worker_id: str | None = None
    ) -> JobOutcome | None:
        with self._cond:
            job = self._jobs.get(job_id)
            if job is None or not job.holds_lease(worker_id):
                _log_stale_commit("complete", job_id, job, worker_id)
                return None
            job.mark_completed(result, now=self._clock())
            return JobOutcome(job=_copy(job), terminal=True)

    def fail(
        self,
        job_id: str,
        error: dict[str, Any],
        *,
        worker_id: str | None = None,
        retryable: bool = True,
    ) -> JobOutcome | None:
        with self._cond:
            job = self._jobs.get(job_id)
            if job is None or not job.holds_lease(worker_id):
                _log_stale_commit("fail", job_id, job, worker_id)
                return None
            delay = job.mark_failed(
                error, now=self._clock(), policy=self.policy, retryable=retryable
            )
            self._cond.notify()
            return JobOutcome(job=_copy(job), terminal=delay is None, retry_in_sec=delay)

    # -------------------------------------------------------------------------
    # Обслуживание
    # -------------------------------------------------------------------------
    def promote_due(self) -> int:
        with self._cond:
            return self._promote_due_locked(self._clock())

    def _promote_due_locked(self, now: float) -> int:
        promoted = 0
        for job in self._jobs.values():
            if job.state == JobState.delayed and (job.run_at or 0) <= now:
                job.mark_waiting()
                heapq.heappush(self._waiting, (job.priority, job.seq, job.id))
                promoted += 1
        if promoted:
            self._cond.notify_all()
        return promoted

    def reclaim_expired_leases(self) -> list[JobOutcome]:
        outcomes: list[JobOutcome] = []
        with self._cond:
            now = self._clock()
            for job in self._jobs.values():
                if job.state != JobState.active or (job.lease_expires_at or 0) > now:
                    continue
                log.warning(
                    "job_lease_expired",
                    extra={"payload": {"job_id": job.id, "lease_owner": job.lease_owner}},
                )
                err = TransientError("Lease истёк до завершения задачи", ErrCode.LEASE_EXPIRED)
                delay = job.mark_failed(err.to_dict(), now=now, policy=self.policy, retryable=True)
                outcomes.append(
                    JobOutcome(job=_copy(job), terminal=delay is None, retry_in_sec=delay)
                )
        return outcomes

    def purge_expired(self) -> PurgeResult:
        res = PurgeResult()
        with self._cond:
            now = self._clock()
            completed = sorted(
                (j for j in self._jobs.values() if j.state == JobState.completed),
                key=lambda j: j.finished_at or 0,
                reverse=True,
            )
            for idx, job in enumerate(completed):
                too_old = now - (job.finished_at or 0) > self.retention.completed_sec
                if too_old or idx >= self.retention.completed_keep:
                    del self._jobs[job.id]
                    res.completed += 1
                    res.removed_ids.append(job.id)
            for job in [j for j in self._jobs.values() if j.state == JobState.failed]:
                if now - (job.finished_at or 0) > self.retention.failed_sec:
                    del self._jobs[job.id]
                    res.failed += 1
                    res.removed_ids.append(job.id)
        return res

    def clean(self) -> int:
        with self._cond:
            ids = [j.id for j in self._jobs.values() if j.state in (JobState.completed, JobState.failed)]
            for job_id in ids:
                del self._jobs[job_id]
        return len(ids)

    def wait_for_work(self, timeout: float) -> bool:
        with self._cond:
            if self._has_ready_locked():
                return True
            self._cond.wait(timeout=max(0.0, timeout))
            return self._has_ready_locked()

    def _has_ready_locked(self) -> bool:
        now = self._clock()
        for job in self._jobs.values():
            if job.state == JobState.waiting:
                return True
            if job.state == JobState.delayed and (job.run_at or 0) <= now:
                return True
        return False

    # -------------------------------------------------------------------------
    # Наблюдаемость
    # -------------------------------------------------------------------------
    def stats(self) -> QueueStats:
        st = QueueStats()
        with self._cond:
            for job in self._jobs.values():
                setattr(st, job.state.value, getattr(st, job.state.value) + 1)
        return st

    def get_job(self, job_id: str) -> Job | None:
        with self._cond:
            job = self._jobs.get(job_id)
            return _copy(job) if job else None

    def get_job_status(self, job_id: str) -> dict[str, Any] | None:
        job = self.get_job(job_id)
        return job.status_view() if job else None


def _copy(job: Job) -> Job:
    # наружу отдаём копию: мутировать запись можно только через методы очереди
    return Job.from_dict(job.to_dict())


def _log_stale_commit(op: str, job_id: str, job: Job | None, worker_id: str | None) -> None:
    log.warning(
        "job_commit_ignored",
        extra={
            "payload": {
                "op": op,
                "job_id": job_id,
                "worker_id": worker_id,
                "state": job.state.value if job else None,
                "lease_owner": job.lease_owner if job else None,
            }
        },
    )
