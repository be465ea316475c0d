"""
Durable очередь задач на Redis (QUEUE_MODE=redis).

Ключи (prefix = QUEUE_PREFIX):
- <p>:job:<id>      JSON записи задачи
- <p>:seq           счётчик порядка постановки (FIFO внутри приоритета)
- <p>:waiting       ZSET, score = priority * 1e12 + seq
- <p>:delayed       ZSET, score = run_at (epoch)
- <p>:active        ZSET, score = lease_expires_at (epoch)
- <p>:completed     ZSET, score = finished_at
- <p>:failed        ZSET, score = finished_at
- <p>:notify        LIST, токены "есть работа" для BLPOP воркеров

Атомарность: WATCH/MULTI (оптимистичные транзакции). Если между чтением и
EXEC ключ поменял другой воркер, WatchError и повтор. Так один job получает
ровно один воркер.
"""

from __future__ import annotations

import math
from collections.abc import Callable
from typing import Any

import redis

from attachment_pipeline.common.errors import ErrCode, TransientError
from attachment_pipeline.common.ids import new_job_id
from attachment_pipeline.common.logging import get_project_logger
from attachment_pipeline.common.time import epoch_now
from attachment_pipeline.domain.enums import FileCategory, JobState
from attachment_pipeline.domain.file_types import priority_for

from .retry import RetentionPolicy, RetryPolicy
from .tasks import Job, JobOutcome, JobPayload, PurgeResult, QueueStats

log = get_project_logger()

_PRIORITY_SCALE = 10**12
_NOTIFY_MAX_LEN = 1000

# apply(job) -> функция дописывания индексов в MULTI, либо None (отмена)
_Apply = Callable[[Job], Callable[[Any], None] | None]


class RedisJobQueue:
    """
    Клиент обязан быть создан с decode_responses=True (см. queue/redis.py):
    id задач из ZSET используются как строки при сборке ключей.
    """

    def __init__(
        self,
        client: redis.Redis,
        *,
        prefix: str = "fpq",
        policy: RetryPolicy | None = None,
        retention: RetentionPolicy | None = None,
        lease_ttl_sec: float = 600,
        clock: Callable[[], float] = epoch_now,
    ) -> None:
        if not client.get_connection_kwargs().get("decode_responses"):
            raise ValueError("RedisJobQueue requires a client with decode_responses=True")
        self._r = client
        self.prefix = prefix
        self.policy = policy or RetryPolicy()
        self.retention = retention or RetentionPolicy()
        self.lease_ttl_sec = lease_ttl_sec
        self._clock = clock

    # -------------------------------------------------------------------------
    # Ключи
    # -------------------------------------------------------------------------
    def _key(self, name: str) -> str:
        return f"{self.prefix}:{name}"

    def _job_key(self, job_id: str) -> str:
        return f"{self.prefix}:job:{job_id}"

    @staticmethod
    def _waiting_score(job: Job) -> int:
        return job.priority * _PRIORITY_SCALE + job.seq

    # -------------------------------------------------------------------------
    # Постановка / резервирование
    # -------------------------------------------------------------------------
    def enqueue(self, category: FileCategory | str, payload: JobPayload) -> str:
        category = FileCategory(category)
        job = Job(
            id=new_job_id(),
            category=category,
            payload=payload,
            priority=priority_for(category),
            seq=int(self._r.incr(self._key("seq"))),
            created_at=self._clock(),
            max_attempts=self.policy.max_attempts,
        )
        pipe = self._r.pipeline(transaction=True)
        pipe.set(self._job_key(job.id), job.to_json())
        pipe.zadd(self._key("waiting"), {job.id: self._waiting_score(job)})
        pipe.rpush(self._key("notify"), "1")
        pipe.ltrim(self._key("notify"), -_NOTIFY_MAX_LEN, -1)
        pipe.execute()
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
        self.promote_due()
        waiting = self._key("waiting")
        with self._r.pipeline() as pipe:
            while True:
                try:
                    pipe.watch(waiting)
                    head = pipe.zrange(waiting, 0, 0)
                    if not head:
                        pipe.unwatch()
                        return None
                    job_id = head[0]
                    key = self._job_key(job_id)
                    pipe.watch(key)
                    raw = pipe.get(key)
                    now = self._clock()
                    job = Job.from_json(raw) if raw else None
                    pipe.multi()
                    pipe.zrem(waiting, job_id)
                    if job is None or job.state != JobState.waiting:
                        # устаревший элемент индекса
                        pipe.execute()
                        continue
                    job.mark_reserved(worker_id, now=now, lease_ttl_sec=self.lease_ttl_sec)
                    pipe.set(key, job.to_json())
                    pipe.zadd(self._key("active"), {job.id: job.lease_expires_at})
                    pipe.execute()
                    return job
                except redis.WatchError:
                    continue

    def set_progress(self, job_id: str, pct: int, *, worker_id: str) -> bool:
        def apply(job: Job):
            if not job.holds_lease(worker_id):
                return None
            job.set_progress(pct)
            # индексы не меняются, пишется только запись задачи
            return lambda pipe: None

        return self._transact_job(job_id, apply) is not None

    # -------------------------------------------------------------------------
    # Завершение
    # -------------------------------------------------------------------------
    def complete(
        self, job_id: str, result: dict[str, Any], *, worker_id: str | None = None
    ) -> JobOutcome | None:
        def apply(job: Job):
            if not job.holds_lease(worker_id):
                _log_stale_commit("complete", job, worker_id)
                return None
            job.mark_completed(result, now=self._clock())

            def writes(pipe) -> None:
                pipe.zrem(self._key("active"), job.id)
                pipe.zadd(self._key("completed"), {job.id: job.finished_at})

            return writes

        job = self._transact_job(job_id, apply)
        return JobOutcome(job=job, terminal=True) if job else None

    def fail(
        self,
        job_id: str,
        error: dict[str, Any],
        *,
        worker_id: str | None = None,
        retryable: bool = True,
    ) -> JobOutcome | None:
        now = self._clock()

        def apply(job: Job):
            if not job.holds_lease(worker_id):
                _log_stale_commit("fail", job, worker_id)
                return None
            job.mark_failed(error, now=now, policy=self.policy, retryable=retryable)
            return self._after_failure_writes(job)

        job = self._transact_job(job_id, apply)
        return _failure_outcome(job, now) if job else None

    def _after_failure_writes(self, job: Job) -> Callable[[Any], None]:
        def writes(pipe) -> None:
            pipe.zrem(self._key("active"), job.id)
            if job.state == JobState.delayed:
                pipe.zadd(self._key("delayed"), {job.id: job.run_at})
            else:
                pipe.zadd(self._key("failed"), {job.id: job.finished_at})

        return writes

    def _transact_job(self, job_id: str, apply: _Apply) -> Job | None:
        key = self._job_key(job_id)
        with self._r.pipeline() as pipe:
            while True:
                try:
                    pipe.watch(key)
                    raw = pipe.get(key)
                    if raw is None:
                        pipe.unwatch()
                        return None
                    job = Job.from_json(raw)
                    writes = apply(job)
                    if writes is None:
                        pipe.unwatch()
                        return None
                    pipe.multi()
                    pipe.set(key, job.to_json())
                    writes(pipe)
                    pipe.execute()
                    return job
                except redis.WatchError:
                    continue

    # -------------------------------------------------------------------------
    # Обслуживание
    # -------------------------------------------------------------------------
    def promote_due(self) -> int:
        now = self._clock()
        due = self._r.zrangebyscore(self._key("delayed"), "-inf", now)
        promoted = 0
        for job_id in due:

            def apply(job: Job):
                if job.state != JobState.delayed:
                    # устаревший элемент индекса
                    return lambda pipe: pipe.zrem(self._key("delayed"), job.id)
                if (job.run_at or 0) > now:
                    return None
                job.mark_waiting()

                def writes(pipe) -> None:
                    pipe.zrem(self._key("delayed"), job.id)
                    pipe.zadd(self._key("waiting"), {job.id: self._waiting_score(job)})
                    pipe.rpush(self._key("notify"), "1")

                return writes

            job = self._transact_job(job_id, apply)
            if job is None and not self._r.exists(self._job_key(job_id)):
                self._r.zrem(self._key("delayed"), job_id)
            elif job is not None and job.state == JobState.waiting:
                promoted += 1
        return promoted

    def reclaim_expired_leases(self) -> list[JobOutcome]:
        now = self._clock()
        expired = self._r.zrangebyscore(self._key("active"), "-inf", now)
        outcomes: list[JobOutcome] = []
        for job_id in expired:

            def apply(job: Job):
                if job.state != JobState.active or (job.lease_expires_at or 0) > now:
                    return None
                log.warning(
                    "job_lease_expired",
                    extra={"payload": {"job_id": job.id, "lease_owner": job.lease_owner}},
                )
                err = TransientError("Lease истёк до завершения задачи", ErrCode.LEASE_EXPIRED)
                job.mark_failed(err.to_dict(), now=now, policy=self.policy, retryable=True)
                return self._after_failure_writes(job)

            job = self._transact_job(job_id, apply)
            if job is not None:
                outcomes.append(_failure_outcome(job, now))
        return outcomes

    def purge_expired(self) -> PurgeResult:
        now = self._clock()
        res = PurgeResult()

        completed_key = self._key("completed")
        old = self._r.zrangebyscore(completed_key, "-inf", now - self.retention.completed_sec)
        self._delete_jobs(completed_key, old)
        overflow = int(self._r.zcard(completed_key)) - self.retention.completed_keep
        extra = self._r.zrange(completed_key, 0, overflow - 1) if overflow > 0 else []
        self._delete_jobs(completed_key, extra)
        res.completed = len(old) + len(extra)
        res.removed_ids.extend(old)
        res.removed_ids.extend(extra)

        failed_key = self._key("failed")
        old_failed = self._r.zrangebyscore(failed_key, "-inf", now - self.retention.failed_sec)
        self._delete_jobs(failed_key, old_failed)
        res.failed = len(old_failed)
        res.removed_ids.extend(old_failed)
        return res

    def clean(self) -> int:
        removed = 0
        for name in ("completed", "failed"):
            index_key = self._key(name)
            ids = self._r.zrange(index_key, 0, -1)
            self._delete_jobs(index_key, ids)
            removed += len(ids)
        return removed

    def _delete_jobs(self, index_key: str, job_ids: list[str]) -> None:
        if not job_ids:
            return
        pipe = self._r.pipeline(transaction=True)
        pipe.delete(*[self._job_key(j) for j in job_ids])
        pipe.zrem(index_key, *job_ids)
        pipe.execute()

    def wait_for_work(self, timeout: float) -> bool:
        now = self._clock()
        if int(self._r.zcard(self._key("waiting"))) > 0:
            return True
        next_due = self._r.zrange(self._key("delayed"), 0, 0, withscores=True)
        if next_due:
            due_in = float(next_due[0][1]) - now
            if due_in <= 0:
                return True
            timeout = min(timeout, due_in)
        item = self._r.blpop([self._key("notify")], timeout=max(1, math.ceil(timeout)))
        return item is not None

    # -------------------------------------------------------------------------
    # Наблюдаемость
    # -------------------------------------------------------------------------
    def stats(self) -> QueueStats:
        pipe = self._r.pipeline(transaction=False)
        names = ("waiting", "active", "completed", "failed", "delayed")
        for name in names:
            pipe.zcard(self._key(name))
        counts = pipe.execute()
        return QueueStats(**{name: int(c) for name, c in zip(names, counts, strict=True)})

    def get_job(self, job_id: str) -> Job | None:
        raw = self._r.get(self._job_key(job_id))
        return Job.from_json(raw) if raw else None

    def get_job_status(self, job_id: str) -> dict[str, Any] | None:
        job = self.get_job(job_id)
        return job.status_view() if job else None


def _failure_outcome(job: Job, now: float) -> JobOutcome:
    if job.state == JobState.delayed:
        return JobOutcome(job=job, terminal=False, retry_in_sec=max(0.0, (job.run_at or now) - now))
    return JobOutcome(job=job, terminal=True)


def _log_stale_commit(op: str, job: Job, worker_id: str | None) -> None:
    log.warning(
        "job_commit_ignored",
        extra={
            "payload": {
                "op": op,
                "job_id": job.id,
                "worker_id": worker_id,
                "state": job.state.value,
                "lease_owner": job.lease_owner,
            }
        },
    )
