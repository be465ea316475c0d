"""
Пул воркеров обработки вложений.

Цикл одного воркера:
- promote_due + reclaim_expired_leases (обслуживание очереди)
- reserve → гейт skip_reason → load_bytes → processor.process (с таймаутом)
- сохранение производного файла → complete / fail
- прогресс в записи задачи: 10 (reserve) → 30 → 60 → 90 → 100 (completed)
- терминальный результат → ResultSink (сообщение + событие в комнату)
- нет работы → wait_for_work (без busy-loop)

Важно:
- таймаут не убивает поток процессора: воркер бросает запуск и идёт дальше,
  lease страхует от «зависших» задач; таймаут всегда меньше lease
- ошибка publish в комнату логируется и не ломает цикл
"""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Any

from attachment_pipeline.common.config import Settings, get_settings
from attachment_pipeline.common.errors import (
    AppError,
    ErrCode,
    TransientError,
    classify_exception,
)
from attachment_pipeline.common.ids import new_worker_id
from attachment_pipeline.common.logging import get_worker_logger
from attachment_pipeline.common.metrics import record_job_result, track_processing_latency
from attachment_pipeline.delivery.base import MessageUpdate, ResultSink
from attachment_pipeline.delivery.results import (
    build_event,
    completed_update,
    failed_update,
    skipped_update,
)
from attachment_pipeline.domain.enums import DerivedKind, JobState, ProcessingStatus
from attachment_pipeline.domain.file_types import timeout_for
from attachment_pipeline.processors.base import DerivedResult, Processor
from attachment_pipeline.processors.registry import ProcessorRegistry
from attachment_pipeline.queue.base import JobQueue
from attachment_pipeline.queue.tasks import (
    PROGRESS_LOADED,
    PROGRESS_PERSISTED,
    PROGRESS_PROCESSED,
    Job,
    JobOutcome,
)
from attachment_pipeline.storage.blob import StorageAdapter

# запас между таймаутом процессора и истечением lease
LEASE_MARGIN_SEC = 5.0


class Worker:
    def __init__(
        self,
        worker_id: str,
        *,
        queue: JobQueue,
        storage: StorageAdapter,
        sink: ResultSink,
        registry: ProcessorRegistry,
        poll_interval_sec: float = 5.0,
        job_timeout_sec: float = 0.0,
    ) -> None:
        self.worker_id = worker_id
        self.queue = queue
        self.storage = storage
        self.sink = sink
        self.registry = registry
        self.poll_interval_sec = poll_interval_sec
        self.job_timeout_sec = job_timeout_sec
        self.log = get_worker_logger(worker_id)
        self._executor: ThreadPoolExecutor | None = None

    # -------------------------------------------------------------------------
    # Цикл
    # -------------------------------------------------------------------------
    def run(self, stop_event: threading.Event) -> None:
        self.log.info("worker_started", extra={"payload": {"worker_id": self.worker_id}})
        try:
            while not stop_event.is_set():
                try:
                    if not self.run_once():
                        self.queue.wait_for_work(self.poll_interval_sec)
                except Exception as e:
                    # ошибки инфраструктуры очереди (Redis и т.п.): пауза и повтор
                    self.log.error(
                        "worker_loop_error",
                        extra={"payload": {"worker_id": self.worker_id, "err": str(e)[:200]}},
                    )
                    stop_event.wait(min(self.poll_interval_sec, 2.0))
        finally:
            self._shutdown_executor()
            self.log.info("worker_stopped", extra={"payload": {"worker_id": self.worker_id}})

    def run_once(self) -> bool:
        """
        Одна итерация. True — задача была взята (очередь, возможно, не пуста).
        """
        self.queue.promote_due()
        for outcome in self.queue.reclaim_expired_leases():
            self._after_outcome(outcome)

        job = self.queue.reserve(self.worker_id)
        if job is None:
            return False

        self.log.info(
            "job_reserved",
            extra={
                "payload": {
                    "job_id": job.id,
                    "category": job.category.value,
                    "attempt": job.attempts,
                    "message_id": job.payload.message_id,
                }
            },
        )
        self._handle(job)
        return True

    # -------------------------------------------------------------------------
    # Обработка задачи
    # -------------------------------------------------------------------------
    def _handle(self, job: Job) -> None:
        try:
            processor = self.registry.get(job.category)
            reason = processor.skip_reason(job.payload)
            if reason:
                derived = DerivedResult.skipped(reason)
            else:
                source = self.storage.load_bytes(job.payload.source_locator)
                self._progress(job, PROGRESS_LOADED)
                derived = self._process_with_timeout(processor, source, job)
            self._progress(job, PROGRESS_PROCESSED)
            result = self._persist(derived)
            self._progress(job, PROGRESS_PERSISTED)
        except Exception as e:
            self._fail(job, classify_exception(e))
            return

        outcome = self.queue.complete(job.id, result, worker_id=self.worker_id)
        if outcome is None:
            return
        self.log.info(
            "job_completed",
            extra={
                "payload": {
                    "job_id": job.id,
                    "processing_status": result["processing_status"],
                    "warnings": result.get("warnings") or [],
                }
            },
        )
        self._after_outcome(outcome)

    def _progress(self, job: Job, pct: int) -> None:
        if not self.queue.set_progress(job.id, pct, worker_id=self.worker_id):
            # lease потерян: commit всё равно будет отклонён очередью
            self.log.warning(
                "job_progress_rejected",
                extra={"payload": {"job_id": job.id, "progress": pct}},
            )

    def timeout_for_job(self, job: Job) -> float:
        """
        Таймаут процессора не больше lease: иначе reclaim отдаст ещё идущую задачу
        другому воркеру.
        """
        timeout = self.job_timeout_sec or timeout_for(job.category)
        return min(timeout, max(1.0, self.queue.lease_ttl_sec - LEASE_MARGIN_SEC))

    def _process_with_timeout(self, processor: Processor, source: bytes, job: Job) -> DerivedResult:
        timeout = self.timeout_for_job(job)
        future = self._get_executor().submit(processor.process, source, job.payload)
        with track_processing_latency(job.category.value):
            try:
                return future.result(timeout=timeout)
            except FutureTimeout as e:
                # поток процессора не прервать: бросаем исполнитель целиком
                self._shutdown_executor()
                raise TransientError(
                    "Превышено время обработки",
                    ErrCode.JOB_TIMEOUT,
                    {"job_id": job.id, "timeout_sec": timeout},
                ) from e

    def _persist(self, derived: DerivedResult) -> dict[str, Any]:
        result: dict[str, Any] = {
            "processing_status": derived.status.value,
            "warnings": list(derived.warnings),
            "details": dict(derived.details),
        }
        artifact = derived.artifact
        if artifact is None:
            return result

        locator = self.storage.save_derived(artifact.data, artifact.suggested_name, artifact.kind)
        url = self.storage.url_for(locator)
        if artifact.kind == DerivedKind.thumbnail:
            result["thumbnail_url"] = url
        else:
            result["render_url"] = url
        result["derived_locator"] = locator
        return result

    def _fail(self, job: Job, err: AppError) -> None:
        outcome = self.queue.fail(
            job.id, err.to_dict(), worker_id=self.worker_id, retryable=err.retryable
        )
        if outcome is None:
            return
        if outcome.terminal:
            self.log.error(
                "job_failed",
                extra={
                    "payload": {
                        "job_id": job.id,
                        "code": err.code,
                        "err": err.message[:200],
                        "attempts": outcome.job.attempts,
                    }
                },
            )
        else:
            self.log.warning(
                "job_retry_scheduled",
                extra={
                    "payload": {
                        "job_id": job.id,
                        "code": err.code,
                        "attempt": outcome.job.attempts,
                        "retry_in_sec": outcome.retry_in_sec,
                    }
                },
            )
        self._after_outcome(outcome)

    # -------------------------------------------------------------------------
    # Доставка результата
    # -------------------------------------------------------------------------
    def _after_outcome(self, outcome: JobOutcome) -> None:
        job = outcome.job
        category = job.category.value
        if not outcome.terminal:
            record_job_result(category, "retry")
            return

        update = _update_for(job)
        record_job_result(category, update.processing_status)
        fields = update.to_fields()
        try:
            self.sink.update_message(job.payload.message_id, fields)
        except Exception as e:
            # результат уже зафиксирован в очереди (get_job_status)
            self.log.error(
                "message_update_failed",
                extra={"payload": {"job_id": job.id, "err": str(e)[:200]}},
            )
            return
        try:
            self.sink.publish(job.payload.room_id, build_event(job.payload.message_id, fields))
        except Exception as e:
            self.log.warning(
                "room_publish_failed",
                extra={"payload": {"job_id": job.id, "room_id": job.payload.room_id, "err": str(e)[:200]}},
            )

    # -------------------------------------------------------------------------
    # Исполнитель процессоров
    # -------------------------------------------------------------------------
    def _get_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=1, thread_name_prefix=f"{self.worker_id}-proc"
            )
        return self._executor

    def _shutdown_executor(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None


def _update_for(job: Job) -> MessageUpdate:
    result = job.result or {}
    status = result.get("processing_status")
    if job.state == JobState.failed or status is None:
        error = (job.error or result.get("error") or {}).get("message") or "processing_failed"
        return failed_update(error)
    if status == ProcessingStatus.skipped.value:
        return skipped_update()
    return completed_update(
        thumbnail_url=result.get("thumbnail_url"),
        render_url=result.get("render_url"),
        warnings=result.get("warnings") or None,
    )


class WorkerPool:
    """
    N воркеров-потоков над одной очередью.
    """

    def __init__(
        self,
        *,
        queue: JobQueue,
        storage: StorageAdapter,
        sink: ResultSink,
        registry: ProcessorRegistry,
        concurrency: int = 2,
        poll_interval_sec: float = 5.0,
        job_timeout_sec: float = 0.0,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        if job_timeout_sec and job_timeout_sec >= queue.lease_ttl_sec:
            raise ValueError(
                f"job_timeout_sec ({job_timeout_sec}) must be below lease_ttl_sec ({queue.lease_ttl_sec})"
            )
        self.queue = queue
        self.workers = [
            Worker(
                new_worker_id(i),
                queue=queue,
                storage=storage,
                sink=sink,
                registry=registry,
                poll_interval_sec=poll_interval_sec,
                job_timeout_sec=job_timeout_sec,
            )
            for i in range(concurrency)
        ]
        self._stop = threading.Event()
        self._threads: list[threading.Thread] = []

    @classmethod
    def from_settings(
        cls,
        *,
        queue: JobQueue,
        storage: StorageAdapter,
        sink: ResultSink,
        registry: ProcessorRegistry,
        settings: Settings | None = None,
    ) -> WorkerPool:
        s = settings or get_settings()
        return cls(
            queue=queue,
            storage=storage,
            sink=sink,
            registry=registry,
            concurrency=s.worker_concurrency,
            poll_interval_sec=s.worker_poll_interval_sec,
            job_timeout_sec=s.worker_job_timeout_sec,
        )

    def start(self) -> None:
        if self._threads:
            return
        self._stop.clear()
        for worker in self.workers:
            t = threading.Thread(
                target=worker.run, args=(self._stop,), name=worker.worker_id, daemon=True
            )
            t.start()
            self._threads.append(t)

    def stop(self, timeout: float | None = None) -> None:
        """
        Мягкая остановка: воркеры дорабатывают текущую задачу.
        """
        self._stop.set()
        for t in self._threads:
            t.join(timeout=timeout)
        self._threads = []

    def run_once(self) -> int:
        """
        По одной итерации каждым воркером (синхронно). Удобно для тестов.
        """
        return sum(1 for w in self.workers if w.run_once())

    def drain(self, max_iterations: int = 1000) -> int:
        """
        Обрабатывать синхронно, пока есть готовые задачи. Возвращает число взятых задач.
        """
        handled = 0
        for _ in range(max_iterations):
            n = self.run_once()
            if n == 0:
                break
            handled += n
        return handled
