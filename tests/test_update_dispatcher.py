"""
Tests for per-user update mailboxes
"""
import asyncio

import pytest

from app.core.logging import get_correlation_id, set_correlation_id
from app.workers.update_dispatcher import DispatcherClosedError, UpdateDispatcher


class Recorder:
    """Handler that records start/end events and can be held open per payload"""

    def __init__(self) -> None:
        self.events: list[tuple[str, object]] = []
        self.gates: dict[object, asyncio.Event] = {}
        self.correlation_ids: dict[object, str | None] = {}

    def hold(self, payload) -> asyncio.Event:
        self.gates[payload] = asyncio.Event()
        return self.gates[payload]

    async def __call__(self, payload) -> None:
        self.events.append(("start", payload))
        self.correlation_ids[payload] = get_correlation_id()
        gate = self.gates.get(payload)
        if gate is not None:
            await gate.wait()
        else:
            await asyncio.sleep(0)
        if payload == "boom":
            raise RuntimeError("handler failed")
        self.events.append(("end", payload))


class TestOrdering:

    @pytest.mark.unit
    async def test_same_key_processed_in_arrival_order(self):
        recorder = Recorder()
        dispatcher = UpdateDispatcher(recorder)

        for i in range(5):
            dispatcher.submit(1, i)
        await dispatcher.join()

        assert recorder.events == [ev for i in range(5) for ev in (("start", i), ("end", i))]

    @pytest.mark.unit
    async def test_same_key_never_overlaps(self):
        recorder = Recorder()
        gate = recorder.hold("first")
        dispatcher = UpdateDispatcher(recorder)

        dispatcher.submit(1, "first")
        dispatcher.submit(1, "second")
        await asyncio.sleep(0.01)

        assert ("start", "second") not in recorder.events
        assert dispatcher.pending == 1

        gate.set()
        await dispatcher.join()
        assert recorder.events.index(("end", "first")) < recorder.events.index(("start", "second"))

    @pytest.mark.unit
    async def test_different_keys_run_concurrently(self):
        recorder = Recorder()
        gate = recorder.hold("slow")
        dispatcher = UpdateDispatcher(recorder)

        dispatcher.submit(1, "slow")
        dispatcher.submit(2, "fast")
        await asyncio.sleep(0.01)

        assert ("end", "fast") in recorder.events
        assert dispatcher.active_keys == 1

        gate.set()
        await dispatcher.join()
        assert dispatcher.active_keys == 0


class TestFailures:

    @pytest.mark.unit
    async def test_handler_error_does_not_stop_mailbox(self):
        recorder = Recorder()
        dispatcher = UpdateDispatcher(recorder)

        dispatcher.submit(1, "boom")
        dispatcher.submit(1, "after")
        await dispatcher.join()

        assert ("end", "after") in recorder.events
        assert ("end", "boom") not in recorder.events

    @pytest.mark.unit
    async def test_correlation_id_travels_with_update(self):
        recorder = Recorder()
        dispatcher = UpdateDispatcher(recorder)

        set_correlation_id("req-1")
        dispatcher.submit(1, "a")
        set_correlation_id("req-2")
        dispatcher.submit(1, "b")
        await dispatcher.join()

        assert recorder.correlation_ids == {"a": "req-1", "b": "req-2"}


class TestShutdown:

    @pytest.mark.unit
    async def test_shutdown_drains_queued_updates(self):
        recorder = Recorder()
        dispatcher = UpdateDispatcher(recorder)
        for i in range(3):
            dispatcher.submit(7, i)

        await dispatcher.shutdown(timeout_seconds=1)

        assert [p for kind, p in recorder.events if kind == "end"] == [0, 1, 2]
        with pytest.raises(DispatcherClosedError):
            dispatcher.submit(7, 3)

    @pytest.mark.unit
    async def test_shutdown_cancels_after_timeout(self):
        recorder = Recorder()
        recorder.hold("stuck")
        dispatcher = UpdateDispatcher(recorder)
        dispatcher.submit(1, "stuck")
        await asyncio.sleep(0)

        await dispatcher.shutdown(timeout_seconds=0.05)

        assert dispatcher.active_keys == 0
        assert ("end", "stuck") not in recorder.events
