"""
Машина состояний задачи обработки файла.

Назначение:
- Централизованное управление переходами состояний
- completed / failed терминальны, из них выхода нет
- единственный цикл: active → delayed → waiting (ретрай)
"""

from __future__ import annotations

from attachment_pipeline.common.errors import ConflictError

from .enums import JobState

# =============================================================================
# РАЗРЕШЁННЫЕ ПЕРЕХОДЫ
# =============================================================================
_TRANSITIONS: dict[JobState, frozenset[JobState]] = {
    JobState.waiting: frozenset({JobState.active}),
    JobState.active: frozenset({JobState.completed, JobState.failed, JobState.delayed}),
    JobState.delayed: frozenset({JobState.waiting}),
    JobState.completed: frozenset(),
    JobState.failed: frozenset(),
}

TERMINAL_STATES = frozenset({JobState.completed, JobState.failed})


def is_terminal(state: JobState) -> bool:
    return state in TERMINAL_STATES


def can_transition(current: JobState, target: JobState) -> bool:
    return target in _TRANSITIONS.get(current, frozenset())


def ensure_transition(job_id: str, current: JobState, target: JobState) -> None:
    """
    Бросает ConflictError, если переход запрещён.
    """
    if not can_transition(current, target):
        raise ConflictError(
            "Недопустимый переход состояния задачи",
            details={"job_id": job_id, "from": current.value, "to": target.value},
        )
