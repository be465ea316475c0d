from __future__ import annotations

import threading

import pytest
from conftest import make_payload

from attachment_pipeline.common.errors import ErrCode
from attachment_pipeline.domain.enums import FileCategory, JobState
from attachment_pipeline.queue.memory import InMemoryJobQueue
from attachment_pipeline.queue.retry import RetentionPolicy, RetryPolicy

_ERR = {"code": "storage_error", "message": "boom"}


@pytest.fixture()
def queue(clock) -> InMemoryJobQueue:
    return InMemoryJobQueue(policy=RetryPolicy(max_attempts=3), clock=clock, lease_ttl_sec=600)


def test_priority_then_fifo(queue):
    video = queue.enqueue(FileCategory.video, make_payload("m-video"))
    img1 = queue.enqueue(FileCategory.image, make_payload("m-img1"))
    doc = queue.enqueue(FileCategory.document, make_payload("m-doc"))
    img2 = queue.enqueue(FileCategory.image, make_payload("m-img2"))

    order = [queue.reserve("w1").id for _ in range(4)]
    assert order == [img1, img2, doc, video]
    assert queue.reserve("w1") is None


def test_reserve_sets_lease_and_attempts(queue, clock):
    job_id = queue.enqueue(FileCategory.image, make_payload())
    job = queue.reserve("w1")
    assert job.id == job_id
    assert job.state == JobState.active
    assert job.attempts == 1
    assert job.lease_owner == "w1"
    assert job.lease_expires_at == clock.now + 600


def test_concurrent_reserve_gives_each_job_once(queue):
    ids = {queue.enqueue(FileCategory.image, make_payload(f"m{i}")) for i in range(50)}
    got: list[str] = []
    lock = threading.Lock()

    def worker(n: int) -> None:
        while True:
            job = queue.reserve(f"w{n}")
            if job is None:
                return
            with lock:
                got.append(job.id)

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(got) == sorted(ids)


def test_complete_is_terminal_and_never_reserved_again(queue):
    job_id = queue.enqueue(FileCategory.image, make_payload())
    queue.reserve("w1")
    outcome = queue.complete(job_id, {"processing_status": "completed"}, worker_id="w1")
    assert outcome.terminal is True
    assert outcome.job.state == JobState.completed
    assert outcome.job.lease_owner is None

    assert queue.reserve("w1") is None
    assert queue.complete(job_id, {"x": 1}, worker_id="w1") is None
    assert queue.fail(job_id, _ERR, worker_id="w1") is None
    assert queue.get_job(job_id).result == {"processing_status": "completed"}


def test_commit_from_foreign_worker_ignored(queue):
    job_id = queue.enqueue(FileCategory.image, make_payload())
    queue.reserve("w1")
    assert queue.complete(job_id, {}, worker_id="w2") is None
    assert queue.get_job(job_id).state == JobState.active


def test_retry_backoff_then_failed(queue, clock):
    job_id = queue.enqueue(FileCategory.model3d, make_payload(filename="a.obj"))
    delays = []
    for _ in range(3):
        job = queue.reserve("w1")
        assert job is not None
        outcome = queue.fail(job_id, _ERR, worker_id="w1")
        assert outcome.terminal is False
        assert outcome.job.state == JobState.delayed
        delays.append(outcome.retry_in_sec)
        # не раньше срока
        assert queue.reserve("w1") is None
        clock.advance(outcome.retry_in_sec)

    assert delays == [2.0, 4.0, 8.0]

    job = queue.reserve("w1")
    assert job.attempts == 4
    outcome = queue.fail(job_id, _ERR, worker_id="w1")
    assert outcome.terminal is True
    assert outcome.job.state == JobState.failed
    assert outcome.job.result == {"error": _ERR}
    assert outcome.job.attempts <= outcome.job.max_attempts + 1

    clock.advance(3600)
    assert queue.reserve("w1") is None


def test_non_retryable_error_fails_immediately(queue):
    job_id = queue.enqueue(FileCategory.image, make_payload())
    queue.reserve("w1")
    outcome = queue.fail(job_id, {"code": "corrupt_file", "message": "bad"}, retryable=False)
    assert outcome.terminal is True
    assert queue.get_job(job_id).attempts == 1
    assert queue.stats().failed == 1


def test_reclaim_expired_lease(queue, clock):
    job_id = queue.enqueue(FileCategory.image, make_payload())
    queue.reserve("w1")
    assert queue.reclaim_expired_leases() == []

    clock.advance(601)
    outcomes = queue.reclaim_expired_leases()
    assert len(outcomes) == 1
    assert outcomes[0].job.id == job_id
    assert outcomes[0].terminal is False
    assert outcomes[0].job.error["code"] == ErrCode.LEASE_EXPIRED

    # запоздавший commit от прежнего владельца игнорируется
    assert queue.complete(job_id, {}, worker_id="w1") is None

    clock.advance(outcomes[0].retry_in_sec)
    job = queue.reserve("w2")
    assert job.id == job_id
    assert job.attempts == 2


def test_stats_and_status(queue, clock):
    a = queue.enqueue(FileCategory.image, make_payload("a"))
    queue.enqueue(FileCategory.image, make_payload("b"))
    queue.enqueue(FileCategory.video, make_payload("c"))
    queue.reserve("w1")
    queue.fail(a, _ERR, worker_id="w1")
    queue.reserve("w1")

    assert queue.stats().to_dict() == {
        "waiting": 1,
        "active": 1,
        "completed": 0,
        "failed": 0,
        "delayed": 1,
    }
    status = queue.get_job_status(a)
    assert status["state"] == "delayed"
    assert status["attempts"] == 1
    assert status["error"] == _ERR
    assert "result" not in status
    assert queue.get_job_status("job_missing") is None


def test_purge_expired_retention(clock):
    q = InMemoryJobQueue(
        policy=RetryPolicy(max_attempts=0),
        retention=RetentionPolicy(completed_sec=100, completed_keep=2, failed_sec=1000),
        clock=clock,
    )
    done = []
    for i in range(3):
        job_id = q.enqueue(FileCategory.image, make_payload(f"m{i}"))
        q.reserve("w")
        q.complete(job_id, {}, worker_id="w")
        done.append(job_id)
        clock.advance(1)
    failed = q.enqueue(FileCategory.image, make_payload("f"))
    q.reserve("w")
    q.fail(failed, _ERR, worker_id="w")

    res = q.purge_expired()
    # сверх лимита удаляется самая старая
    assert res.completed == 1
    assert res.removed_ids == [done[0]]

    clock.advance(200)
    res = q.purge_expired()
    assert res.completed == 2
    assert res.failed == 0

    clock.advance(1000)
    assert q.purge_expired().failed == 1
    assert q.stats().to_dict() == {k: 0 for k in ("waiting", "active", "completed", "failed", "delayed")}


def test_clean_drops_terminal_jobs(queue):
    a = queue.enqueue(FileCategory.image, make_payload("a"))
    queue.enqueue(FileCategory.image, make_payload("b"))
    queue.reserve("w")
    queue.complete(a, {}, worker_id="w")
    assert queue.clean() == 1
    assert queue.get_job(a) is None
    assert queue.stats().waiting == 1


def test_wait_for_work(queue, clock):
    assert queue.wait_for_work(0.01) is False
    queue.enqueue(FileCategory.image, make_payload())
    assert queue.wait_for_work(0.01) is True


def test_wait_for_work_wakes_on_enqueue(queue):
    result: list[bool] = []
    t = threading.Thread(target=lambda: result.append(queue.wait_for_work(5)))
    t.start()
    queue.enqueue(FileCategory.image, make_payload())
    t.join(timeout=5)
    assert result == [True]
