from __future__ import annotations

from conftest import make_payload

from attachment_pipeline.domain.enums import FileCategory
from attachment_pipeline.jobs import retention_job
from attachment_pipeline.queue.memory import InMemoryJobQueue
from attachment_pipeline.queue.retry import RetentionPolicy


def test_retention_job_purges_old_completed(clock):
    q = InMemoryJobQueue(retention=RetentionPolicy(completed_sec=10), clock=clock)
    job_id = q.enqueue(FileCategory.image, make_payload())
    q.reserve("w")
    q.complete(job_id, {}, worker_id="w")

    assert retention_job.run(q).completed == 0
    clock.advance(11)
    res = retention_job.run(q)
    assert res.completed == 1
    assert res.removed_ids == [job_id]
    assert q.get_job(job_id) is None
