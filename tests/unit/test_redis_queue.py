from __future__ import annotations

import json
import threading

import pytest
from conftest import make_payload

from attachment_pipeline.domain.enums import FileCategory, JobState
from attachment_pipeline.queue.redis_queue import RedisJobQueue
from attachment_pipeline.queue.retry import RetentionPolicy, RetryPolicy

fakeredis = pytest.importorskip("fakeredis")

_ERR = {"code": "storage_error", "message": "boom"}


@pytest.fixture()
def r():
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture()
def queue(r, clock) -> RedisJobQueue:
    return RedisJobQueue(r, prefix="t", policy=RetryPolicy(max_attempts=2), clock=clock)


def test_enqueue_persists_job_record(queue, r):
    job_id = queue.enqueue(FileCategory.image, make_payload())
    raw = json.loads(r.get(f"t:job:{job_id}"))
    assert raw["state"] == "waiting"
    assert raw["priority"] == 1
    assert raw["payload"]["message_id"] == "m1"
    assert r.zscore("t:waiting", job_id) is not None
    assert r.llen("t:notify") == 1


def test_priority_then_fifo(queue):
    video = queue.enqueue(FileCategory.video, make_payload("v"))
    model = queue.enqueue(FileCategory.model3d, make_payload("m", filename="a.stl"))
    img = queue.enqueue(FileCategory.image, make_payload("i"))
    img2 = queue.enqueue(FileCategory.image, make_payload("i2"))
    order = [queue.reserve("w").id for _ in range(4)]
    assert order == [img, img2, video, model]
    assert queue.reserve("w") is None


def test_state_survives_new_queue_instance(queue, r, clock):
    job_id = queue.enqueue(FileCategory.image, make_payload())
    queue.reserve("w1")

    other = RedisJobQueue(r, prefix="t", policy=RetryPolicy(max_attempts=2), clock=clock)
    assert other.reserve("w2") is None
    outcome = other.complete(job_id, {"processing_status": "completed"}, worker_id="w1")
    assert outcome.terminal is True
    assert other.get_job_status(job_id)["state"] == "completed"
    assert r.zcard("t:active") == 0
    assert r.zcard("t:completed") == 1


def test_foreign_worker_commit_ignored(queue):
    job_id = queue.enqueue(FileCategory.image, make_payload())
    queue.reserve("w1")
    assert queue.complete(job_id, {}, worker_id="w2") is None
    assert queue.fail(job_id, _ERR, worker_id="w2") is None
    assert queue.get_job(job_id).state == JobState.active


def test_retry_then_failed(queue, clock, r):
    job_id = queue.enqueue(FileCategory.document, make_payload(filename="a.pdf"))
    delays = []
    while True:
        job = queue.reserve("w")
        assert job is not None
        outcome = queue.fail(job_id, _ERR, worker_id="w")
        if outcome.terminal:
            break
        delays.append(outcome.retry_in_sec)
        assert r.zscore("t:delayed", job_id) == pytest.approx(clock.now + outcome.retry_in_sec)
        assert queue.reserve("w") is None
        clock.advance(outcome.retry_in_sec)

    assert delays == [2.0, 4.0]
    job = queue.get_job(job_id)
    assert job.state == JobState.failed
    assert job.attempts == 3
    assert queue.stats().failed == 1
    assert r.zcard("t:delayed") == 0


def test_promote_due_moves_delayed_to_waiting(queue, clock):
    job_id = queue.enqueue(FileCategory.image, make_payload())
    queue.reserve("w")
    queue.fail(job_id, _ERR, worker_id="w")
    assert queue.promote_due() == 0
    clock.advance(2)
    assert queue.promote_due() == 1
    assert queue.stats().waiting == 1
    assert queue.wait_for_work(1) is True


def test_reclaim_expired_leases(queue, clock):
    job_id = queue.enqueue(FileCategory.image, make_payload())
    queue.reserve("w1")
    clock.advance(queue.lease_ttl_sec + 1)
    outcomes = queue.reclaim_expired_leases()
    assert [o.job.id for o in outcomes] == [job_id]
    assert outcomes[0].job.error["code"] == "lease_expired"
    assert queue.stats().active == 0
    assert queue.stats().delayed == 1


def test_purge_and_clean(r, clock):
    q = RedisJobQueue(
        r,
        prefix="p",
        policy=RetryPolicy(max_attempts=0),
        retention=RetentionPolicy(completed_sec=50, completed_keep=1, failed_sec=500),
        clock=clock,
    )
    ids = []
    for i in range(2):
        job_id = q.enqueue(FileCategory.image, make_payload(f"m{i}"))
        q.reserve("w")
        q.complete(job_id, {}, worker_id="w")
        ids.append(job_id)
        clock.advance(1)
    failed = q.enqueue(FileCategory.image, make_payload("f"))
    q.reserve("w")
    q.fail(failed, _ERR, worker_id="w")

    res = q.purge_expired()
    assert res.completed == 1
    assert res.removed_ids == [ids[0]]
    assert r.get(f"p:job:{ids[0]}") is None

    assert q.clean() == 2
    assert q.stats().to_dict() == {k: 0 for k in ("waiting", "active", "completed", "failed", "delayed")}


def test_retry_limit_comes_from_job_record(r, clock):
    producer = RedisJobQueue(r, prefix="t", policy=RetryPolicy(max_attempts=3), clock=clock)
    consumer = RedisJobQueue(r, prefix="t", policy=RetryPolicy(max_attempts=6), clock=clock)
    job_id = producer.enqueue(FileCategory.document, make_payload(filename="a.pdf"))

    while True:
        assert consumer.reserve("w") is not None
        outcome = consumer.fail(job_id, _ERR, worker_id="w")
        if outcome.terminal:
            break
        clock.advance(outcome.retry_in_sec)

    job = consumer.get_job(job_id)
    assert job.state == JobState.failed
    assert job.max_attempts == 3
    assert job.attempts == job.max_attempts + 1


def test_progress_only_from_lease_holder(queue):
    job_id = queue.enqueue(FileCategory.image, make_payload())
    assert queue.set_progress(job_id, 30, worker_id="w1") is False
    queue.reserve("w1")
    assert queue.get_job_status(job_id)["progress"] == 10

    assert queue.set_progress(job_id, 60, worker_id="w1") is True
    assert queue.set_progress(job_id, 90, worker_id="w2") is False
    assert queue.get_job(job_id).progress == 60
    assert queue.stats().active == 1

    queue.complete(job_id, {"processing_status": "completed"}, worker_id="w1")
    assert queue.get_job(job_id).progress == 100
    assert queue.set_progress(job_id, 10, worker_id="w1") is False


def test_concurrent_reserve_gives_each_job_once(clock):
    server = fakeredis.FakeServer()

    def make_queue() -> RedisJobQueue:
        client = fakeredis.FakeRedis(server=server, decode_responses=True)
        return RedisJobQueue(client, prefix="c", clock=clock)

    ids = {make_queue().enqueue(FileCategory.image, make_payload(f"m{i}")) for i in range(80)}
    got: list[str] = []
    lock = threading.Lock()

    def worker(n: int) -> None:
        q = make_queue()
        while True:
            job = q.reserve(f"w{n}")
            if job is None:
                return
            with lock:
                got.append(job.id)

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(got) == sorted(ids)


def test_bytes_client_rejected():
    with pytest.raises(ValueError):
        RedisJobQueue(fakeredis.FakeRedis(), prefix="b")
