from __future__ import annotations

import json

import pytest

from attachment_pipeline.delivery.redis_sink import RedisResultSink
from attachment_pipeline.delivery.results import build_event, completed_update, failed_update

fakeredis = pytest.importorskip("fakeredis")


def test_completed_update_omits_empty_fields():
    fields = completed_update(render_url="/files/render/x.glb", warnings=["compressed_output_invalid"]).to_fields()
    assert fields == {
        "processing_status": "completed",
        "render_url": "/files/render/x.glb",
        "warnings": ["compressed_output_invalid"],
    }
    assert failed_update("boom").to_fields() == {"processing_status": "failed", "error": "boom"}


def test_build_event_shape():
    ev = build_event("m1", {"processing_status": "skipped"})
    assert ev == {
        "schema_version": "v1",
        "event_type": "message.update",
        "message_id": "m1",
        "processing_status": "skipped",
    }


def test_redis_sink_writes_hash_and_publishes():
    r = fakeredis.FakeRedis(decode_responses=True)
    pubsub = r.pubsub()
    pubsub.subscribe("room:r1")
    pubsub.get_message(timeout=1)

    sink = RedisResultSink(r)
    fields = completed_update(thumbnail_url="/files/t.webp", warnings=["w"]).to_fields()
    sink.update_message("m1", fields)
    sink.publish("r1", build_event("m1", fields))

    stored = r.hgetall("msg:m1")
    assert stored["processing_status"] == "completed"
    assert stored["thumbnail_url"] == "/files/t.webp"
    assert json.loads(stored["warnings"]) == ["w"]

    msg = pubsub.get_message(timeout=1)
    assert msg is not None
    assert json.loads(msg["data"])["message_id"] == "m1"
