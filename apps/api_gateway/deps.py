"""
FastAPI Depends.

Сюда выносим:
- доступ к очереди задач процесса (app.state.queue)
"""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from attachment_pipeline.common.errors import ErrCode
from attachment_pipeline.queue.base import JobQueue


def queue_dep(request: Request) -> JobQueue:
    queue = getattr(request.app.state, "queue", None)
    if queue is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"code": ErrCode.REDIS_ERROR, "message": "Очередь не инициализирована"},
        )
    return queue
