"""Tests for the background event emitter."""

import asyncio

from trainfood.events import EventName, QueueEmitter

from .conftest import EventRecorder


class Flaky:
    def __init__(self, failures: int) -> None:
        self.failures = failures
        self.attempts: list[int] = []

    async def __call__(self, event) -> None:
        self.attempts.append(event.attempt)
        if len(self.attempts) <= self.failures:
            raise RuntimeError("handler down")


class TestQueueEmitter:
    async def test_delivers_to_every_handler(self):
        first, second = EventRecorder(), EventRecorder()
        emitter = QueueEmitter([first], delay=0)
        emitter.subscribe(second)

        emitter.emit(EventName.CREATED, "ord_1")
        emitter.emit(EventName.CANCELLED, "ord_1")
        await emitter.drain()
        await emitter.aclose()

        assert first.names() == [EventName.CREATED, EventName.CANCELLED]
        assert second.names() == first.names()

    async def test_emit_returns_before_dispatch(self):
        recorder = EventRecorder()
        emitter = QueueEmitter([recorder], delay=0.05)

        emitter.emit(EventName.DELIVERED, "ord_1")
        assert recorder.events == []

        await emitter.drain()
        await emitter.aclose()
        assert recorder.names() == [EventName.DELIVERED]

    async def test_retries_failed_handler(self):
        flaky = Flaky(failures=2)
        emitter = QueueEmitter([flaky], delay=0, max_attempts=3, retry_backoff=0)

        emitter.emit(EventName.ASSIGNED, "ord_1")
        await emitter.drain()
        await emitter.aclose()

        assert flaky.attempts == [1, 2, 3]

    async def test_gives_up_quietly(self, caplog):
        flaky = Flaky(failures=10)
        after = EventRecorder()
        emitter = QueueEmitter([flaky, after], delay=0, max_attempts=2, retry_backoff=0)

        emitter.emit(EventName.PICKED_UP, "ord_1")
        await emitter.drain()
        await emitter.aclose()

        assert flaky.attempts == [1, 2]
        assert after.names() == [EventName.PICKED_UP]
        assert "gave up" in caplog.text

    async def test_redelivery_keeps_event_id(self):
        flaky = Flaky(failures=1)
        ids = []

        async def capture(event):
            ids.append(event.id)
            await flaky(event)

        emitter = QueueEmitter([capture], delay=0, retry_backoff=0)
        emitter.emit(EventName.CREATED, "ord_1")
        await emitter.drain()
        await emitter.aclose()

        assert len(ids) == 2
        assert ids[0] == ids[1]

    def test_emit_without_loop_never_raises(self):
        emitter = QueueEmitter([EventRecorder()])
        emitter.emit(EventName.CREATED, "ord_1")

    async def test_aclose_is_idempotent(self):
        emitter = QueueEmitter(delay=0)
        await emitter.aclose()
        emitter.emit(EventName.CREATED, "ord_1")
        await asyncio.sleep(0)
        await emitter.aclose()
        await emitter.aclose()
