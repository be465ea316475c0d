"""
Контракты задач очереди.

Правила:
- payload неизменяем после enqueue
- запись задачи JSON-совместима (Redis хранит её строкой)
- переходы состояний делаются только методами Job (под локом/транзакцией бэкенда)
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from typing import Any

from attachment_pipeline.common.time import epoch_to_iso
from attachment_pipeline.domain.enums import FileCategory, JobState
from attachment_pipeline.domain.state_machine import ensure_transition

from .retry import RetryPolicy

# Прогресс задачи, % (completed всегда 100)
PROGRESS_RESERVED = 10
PROGRESS_LOADED = 30
PROGRESS_PROCESSED = 60
PROGRESS_PERSISTED = 90
PROGRESS_DONE = 100


@dataclass(frozen=True)
class JobPayload:
    message_id: str
    room_id: str
    source_locator: str
    original_filename: str
    mime_type: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> JobPayload:
        return cls(
            message_id=str(data["message_id"]),
            room_id=str(data["room_id"]),
            source_locator=str(data["source_locator"]),
            original_filename=str(data.get("original_filename") or ""),
            mime_type=data.get("mime_type"),
        )


@dataclass
class Job:
    id: str
    category: FileCategory
    payload: JobPayload
    priority: int
    seq: int
    created_at: float
    max_attempts: int = 3
    attempts: int = 0
    progress: int = 0
    state: JobState = JobState.waiting
    result: dict[str, Any] | None = None
    error: dict[str, Any] | None = None
    lease_owner: str | None = None
    lease_expires_at: float | None = None
    run_at: float | None = None
    last_attempt_at: float | None = None
    finished_at: float | None = None

    # -------------------------------------------------------------------------
    # Переходы
    # -------------------------------------------------------------------------
    def mark_reserved(self, worker_id: str, *, now: float, lease_ttl_sec: float) -> None:
        ensure_transition(self.id, self.state, JobState.active)
        self.state = JobState.active
        self.attempts += 1
        self.progress = PROGRESS_RESERVED
        self.lease_owner = worker_id
        self.lease_expires_at = now + lease_ttl_sec
        self.last_attempt_at = now
        self.run_at = None

    def mark_completed(self, result: dict[str, Any], *, now: float) -> None:
        ensure_transition(self.id, self.state, JobState.completed)
        self.state = JobState.completed
        self.result = dict(result)
        self.progress = PROGRESS_DONE
        self.finished_at = now
        self._release_lease()

    def set_progress(self, pct: int) -> None:
        self.progress = max(0, min(PROGRESS_DONE, int(pct)))

    def mark_failed(
        self,
        error: dict[str, Any],
        *,
        now: float,
        policy: RetryPolicy,
        retryable: bool,
    ) -> float | None:
        """
        Ошибка попытки. Возвращает задержку до ретрая или None, если задача
        ушла в терминальный failed.
        """
        self.error = dict(error)
        retry_index = self.attempts - 1
        # лимит записан в задаче при enqueue; политика воркера задаёт только задержки
        if retryable and policy.should_retry(retry_index, self.max_attempts):
            delay = policy.delay_for(retry_index)
            ensure_transition(self.id, self.state, JobState.delayed)
            self.state = JobState.delayed
            self.run_at = now + delay
            self._release_lease()
            return delay

        ensure_transition(self.id, self.state, JobState.failed)
        self.state = JobState.failed
        self.result = {"error": dict(error)}
        self.finished_at = now
        self._release_lease()
        return None

    def mark_waiting(self) -> None:
        ensure_transition(self.id, self.state, JobState.waiting)
        self.state = JobState.waiting
        self.run_at = None

    def holds_lease(self, worker_id: str | None) -> bool:
        """
        worker_id=None — вызов от самой очереди (reclaim), проверяем только состояние.
        """
        if self.state != JobState.active:
            return False
        return worker_id is None or self.lease_owner == worker_id

    def _release_lease(self) -> None:
        self.lease_owner = None
        self.lease_expires_at = None

    # -------------------------------------------------------------------------
    # Сериализация
    # -------------------------------------------------------------------------
    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["category"] = self.category.value
        data["state"] = self.state.value
        data["payload"] = self.payload.to_dict()
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Job:
        return cls(
            id=data["id"],
            category=FileCategory(data["category"]),
            payload=JobPayload.from_dict(data["payload"]),
            priority=int(data["priority"]),
            seq=int(data["seq"]),
            created_at=float(data["created_at"]),
            max_attempts=int(data.get("max_attempts", 3)),
            attempts=int(data.get("attempts", 0)),
            progress=int(data.get("progress", 0)),
            state=JobState(data.get("state", JobState.waiting.value)),
            result=data.get("result"),
            error=data.get("error"),
            lease_owner=data.get("lease_owner"),
            lease_expires_at=data.get("lease_expires_at"),
            run_at=data.get("run_at"),
            last_attempt_at=data.get("last_attempt_at"),
            finished_at=data.get("finished_at"),
        )

    @classmethod
    def from_json(cls, raw: str) -> Job:
        return cls.from_dict(json.loads(raw))

    def status_view(self) -> dict[str, Any]:
        """
        Представление для getJobStatus / админки.
        """
        view: dict[str, Any] = {
            "id": self.id,
            "category": self.category.value,
            "state": self.state.value,
            "attempts": self.attempts,
            "max_attempts": self.max_attempts,
            "progress": self.progress,
            "message_id": self.payload.message_id,
            "created_at": epoch_to_iso(self.created_at),
            "last_attempt_at": epoch_to_iso(self.last_attempt_at),
        }
        if self.run_at is not None:
            view["run_at"] = epoch_to_iso(self.run_at)
        if self.result is not None:
            view["result"] = self.result
        if self.error is not None:
            view["error"] = self.error
        return view


@dataclass
class JobOutcome:
    """
    Явный результат complete/fail (вместо событий очереди).

    terminal=True — задача в completed/failed, результат пора отдавать в ResultSink.
    retry_in_sec — задержка до следующей попытки (только для delayed).
    """

    job: Job
    terminal: bool
    retry_in_sec: float | None = None


@dataclass
class QueueStats:
    waiting: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0
    delayed: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass
class PurgeResult:
    completed: int = 0
    failed: int = 0
    removed_ids: list[str] = field(default_factory=list)
