"""
Единые ошибки и коды ошибок.

Назначение:
- предсказуемые коды для очереди / сообщений / HTTP
- единый стиль исключений по проекту
- классификация ошибок воркера: transient (ретрай) / permanent (сразу failed)
"""

from __future__ import annotations

from dataclasses import dataclass


class ErrCode:
    # Общие
    UNKNOWN = "unknown"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"

    # Обработка файлов
    UNSUPPORTED_FILE = "unsupported_file"
    CORRUPT_FILE = "corrupt_file"
    CONVERSION_FAILED = "conversion_failed"
    MESH_VALIDATION = "mesh_validation"
    JOB_TIMEOUT = "job_timeout"
    LEASE_EXPIRED = "lease_expired"

    # Инфра/хранилища
    REDIS_ERROR = "redis_error"
    STORAGE_ERROR = "storage_error"


@dataclass
class AppError(Exception):
    """
    Базовая ошибка приложения.
    - code: стабильный код ошибки
    - message: безопасное сообщение (уходит в сообщение чата)
    - details: доп. данные (без секретов/PII)
    """

    code: str
    message: str
    details: dict | None = None

    def __str__(self) -> str:  # pragma: no cover
        return f"{self.code}: {self.message}"

    # Повторная попытка имеет смысл?
    retryable = False

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


class TransientError(AppError):
    """
    Временная ошибка: I/O, таймаут, недоступность хранилища.
    Ретраится с экспоненциальным backoff.
    """

    retryable = True

    def __init__(
        self, message: str, code: str = ErrCode.STORAGE_ERROR, details: dict | None = None
    ) -> None:
        super().__init__(code, message, details)


class PermanentError(AppError):
    """
    Постоянная ошибка: битый/неподдерживаемый файл, отказ конвертера.
    Сразу terminal failed, без ретраев.
    """

    def __init__(
        self, message: str, code: str = ErrCode.UNSUPPORTED_FILE, details: dict | None = None
    ) -> None:
        super().__init__(code, message, details)


class NotFoundError(PermanentError):
    def __init__(self, message: str = "Не найдено", details: dict | None = None) -> None:
        super().__init__(message, ErrCode.NOT_FOUND, details)


class ConflictError(AppError):
    def __init__(self, message: str = "Конфликт", details: dict | None = None) -> None:
        super().__init__(ErrCode.CONFLICT, message, details)


class MeshValidationError(AppError):
    """
    Упакованный GLB не прошёл структурную валидацию.
    Наружу процессора не выходит: вызывает один fallback без сжатия.
    """

    def __init__(self, issues: list[str], details: dict | None = None) -> None:
        super().__init__(
            ErrCode.MESH_VALIDATION,
            f"GLB не прошёл валидацию ({len(issues)} ошибок)",
            {**(details or {}), "issues": list(issues)},
        )
        self.issues = list(issues)


def classify_exception(exc: BaseException) -> AppError:
    """
    Нормализует любое исключение процессора в AppError.

    - AppError → как есть
    - TimeoutError / ConnectionError / OSError → TransientError
    - всё остальное → TransientError с кодом unknown (ретраи ограничены max_attempts)
    """
    if isinstance(exc, AppError):
        return exc
    if isinstance(exc, TimeoutError):
        return TransientError(str(exc) or "timeout", code=ErrCode.JOB_TIMEOUT)
    if isinstance(exc, (ConnectionError, OSError)):
        return TransientError(str(exc) or exc.__class__.__name__, code=ErrCode.STORAGE_ERROR)
    return TransientError(
        str(exc) or exc.__class__.__name__,
        code=ErrCode.UNKNOWN,
        details={"type": exc.__class__.__name__},
    )
