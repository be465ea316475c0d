"""
Политика ретраев очереди.

Назначение:
- ограниченное число повторных попыток (max_attempts)
- экспоненциальный backoff: base * 2^retry_index, с потолком cap
- retry_index считается с 0: первая повторная попытка ждёт base секунд
"""

from __future__ import annotations

from dataclasses import dataclass

from attachment_pipeline.common.config import Settings


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_sec: float = 2.0
    cap_sec: float = 60.0

    def should_retry(self, retry_index: int, max_attempts: int | None = None) -> bool:
        """
        retry_index — сколько ретраев уже было до этой ошибки.
        max_attempts: лимит из записи задачи, если он задан, важнее лимита политики.
        """
        limit = self.max_attempts if max_attempts is None else max_attempts
        return 0 <= retry_index < limit

    def delay_for(self, retry_index: int) -> float:
        if retry_index < 0:
            return 0.0
        return float(min(self.cap_sec, self.base_sec * (2**retry_index)))

    @classmethod
    def from_settings(cls, s: Settings) -> RetryPolicy:
        return cls(
            max_attempts=max(0, int(s.queue_max_attempts)),
            base_sec=max(0.0, float(s.queue_backoff_base_sec)),
            cap_sec=max(0.0, float(s.queue_backoff_cap_sec)),
        )


@dataclass(frozen=True)
class RetentionPolicy:
    """
    Сколько держать терминальные задачи (для отладки), потом GC.
    """

    completed_sec: float = 3600
    completed_keep: int = 100
    failed_sec: float = 86_400

    @classmethod
    def from_settings(cls, s: Settings) -> RetentionPolicy:
        return cls(
            completed_sec=float(s.retention_completed_sec),
            completed_keep=int(s.retention_completed_keep),
            failed_sec=float(s.retention_failed_sec),
        )
