from __future__ import annotations

import pytest

from attachment_pipeline.queue.tasks import JobPayload


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, sec: float) -> None:
        self.now += sec


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


def make_payload(
    message_id: str = "m1",
    *,
    room_id: str = "r1",
    filename: str = "photo.jpg",
    locator: str = "uploads/photo.jpg",
    mime_type: str | None = None,
) -> JobPayload:
    return JobPayload(
        message_id=message_id,
        room_id=room_id,
        source_locator=locator,
        original_filename=filename,
        mime_type=mime_type,
    )
