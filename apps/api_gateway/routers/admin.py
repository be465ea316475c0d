"""
Admin endpoints очереди вложений.

Назначение:
- счётчики очереди по состояниям
- статус отдельной задачи (для поддержки и отладки)
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from apps.api_gateway.deps import queue_dep
from attachment_pipeline.common.errors import ErrCode
from attachment_pipeline.queue.base import JobQueue

router = APIRouter()


class QueueStatsResponse(BaseModel):
    waiting: int
    active: int
    completed: int
    failed: int
    delayed: int


class JobStatusResponse(BaseModel):
    id: str
    category: str
    state: str
    attempts: int
    max_attempts: int
    progress: int = 0
    message_id: str
    created_at: str | None = None
    last_attempt_at: str | None = None
    run_at: str | None = None
    result: dict[str, Any] | None = None
    error: dict[str, Any] | None = None


@router.get("/admin/queue/stats", response_model=QueueStatsResponse)
def admin_queue_stats(queue: JobQueue = Depends(queue_dep)) -> QueueStatsResponse:
    try:
        st = queue.stats()
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "code": ErrCode.REDIS_ERROR,
                "message": "Не удалось получить состояние очереди",
                "details": {"err": str(e)[:200]},
            },
        ) from e
    return QueueStatsResponse(**st.to_dict())


@router.get("/admin/jobs/{job_id}", response_model=JobStatusResponse)
def admin_job_status(job_id: str, queue: JobQueue = Depends(queue_dep)) -> JobStatusResponse:
    view = queue.get_job_status(job_id)
    if view is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"code": ErrCode.NOT_FOUND, "message": "Задача не найдена"},
        )
    return JobStatusResponse(**view)
