import asyncio

import pytest

from src.field_extraction import FieldIssue, ScanStatus
from src.input_handler import RawCapture
from src.session import ScanSession, ScanSessionManager, ScanState
from src.utils.exceptions import InvalidTransitionError

from conftest import DRIVER_LICENSE, TODAY, FakeRecognitionBackend, card_png, make_pipeline


class Recorder:
    """Collects delivered results and state changes."""

    def __init__(self):
        self.results = []
        self.changes = []

    def manager(self, registry, backend):
        return ScanSessionManager(
            make_pipeline(registry, backend),
            on_result=self.results.append,
            on_state=self.changes.append
        )

    def states(self, session_id):
        return [c.current for c in self.changes if c.session_id == session_id]


async def _until_waiting(backend, count=1):
    while backend.waiting < count:
        await asyncio.sleep(0)


def test_scan_delivers_one_complete_result(registry):
    recorder = Recorder()

    async def scenario():
        manager = recorder.manager(registry, FakeRecognitionBackend(DRIVER_LICENSE))
        handle = manager.submit_capture(card_png(), "png")
        return handle, await manager.wait(handle)

    handle, result = asyncio.run(scenario())

    assert recorder.results == [result]
    assert result.status is ScanStatus.COMPLETE
    assert result.session_id == handle.session_id
    assert result.template_id == "us-driver-license-v1"
    assert not result.degraded
    assert set(result.timings) == {"normalize", "recognize", "extract", "validate"}
    assert recorder.states(handle.session_id) == [
        ScanState.CAPTURING,
        ScanState.NORMALIZING,
        ScanState.RECOGNIZING,
        ScanState.EXTRACTING,
        ScanState.VALIDATING,
        ScanState.DONE,
    ]
    assert recorder.changes[-1].status is ScanStatus.COMPLETE


def test_new_capture_supersedes_the_running_scan(registry):
    recorder = Recorder()
    backend = FakeRecognitionBackend(DRIVER_LICENSE, gated=True)

    async def scenario():
        manager = recorder.manager(registry, backend)
        first = manager.submit_capture(card_png(), "png")
        await _until_waiting(backend, 1)

        second = manager.submit_capture(card_png(), "png")
        await _until_waiting(backend, 2)
        backend.release()

        return first, second, await manager.wait(first), await manager.wait(second), manager

    first, second, first_result, second_result, manager = asyncio.run(scenario())

    assert first_result is None
    assert len(recorder.results) == 1
    assert recorder.results[0].session_id == second.session_id
    assert second_result.status is ScanStatus.COMPLETE
    assert ScanState.SUPERSEDED in recorder.states(first.session_id)
    assert ScanState.DONE not in recorder.states(first.session_id)
    assert manager.get_session(first.session_id).capture is None
    assert first.generation < second.generation == manager.generation


def test_cancel_drops_the_result(registry):
    recorder = Recorder()
    backend = FakeRecognitionBackend(DRIVER_LICENSE, gated=True)

    async def scenario():
        manager = recorder.manager(registry, backend)
        handle = manager.submit_capture(card_png(), "png")
        await _until_waiting(backend)

        cancelled = manager.cancel(handle)
        backend.release()
        result = await manager.wait(handle)
        return manager, handle, cancelled, result

    manager, handle, cancelled, result = asyncio.run(scenario())

    assert cancelled
    assert result is None
    assert recorder.results == []
    assert manager.current_state is ScanState.SUPERSEDED
    assert not manager.cancel(handle)


def test_undecodable_capture_fails_on_the_generic_template(registry):
    recorder = Recorder()
    backend = FakeRecognitionBackend(DRIVER_LICENSE)

    async def scenario():
        manager = recorder.manager(registry, backend)
        return await manager.wait(manager.submit_capture(b"definitely not an image", "png"))

    result = asyncio.run(scenario())

    assert result.status is ScanStatus.FAILED
    assert result.template_id == "generic-id-v1"
    assert result.errors
    assert all(f.issues == [FieldIssue.NOT_FOUND] for f in result.fields.values())
    assert backend.calls == 0
    assert recorder.results == [result]


def test_unavailable_recognition_fails_the_scan(registry):
    recorder = Recorder()
    backend = FakeRecognitionBackend(DRIVER_LICENSE, failures=10)

    async def scenario():
        manager = recorder.manager(registry, backend)
        return await manager.wait(manager.submit_capture(card_png(), "png"))

    result = asyncio.run(scenario())

    assert result.status is ScanStatus.FAILED
    assert backend.calls == 3
    assert len(recorder.results) == 1


def test_blank_document_fails(registry):
    async def scenario():
        manager = ScanSessionManager(make_pipeline(registry, FakeRecognitionBackend([])))
        return await manager.wait(manager.submit_capture(card_png(), "png"))

    result = asyncio.run(scenario())

    assert result.status is ScanStatus.FAILED
    assert result.fallback_template
    assert result.matches_template(registry.fallback)


def test_reset_returns_to_idle(registry):
    recorder = Recorder()

    async def scenario():
        manager = recorder.manager(registry, FakeRecognitionBackend(DRIVER_LICENSE))
        handle = manager.submit_capture(card_png(), "png")
        await manager.wait(handle)
        manager.reset()
        return manager, handle

    manager, handle = asyncio.run(scenario())

    assert manager.current_state is ScanState.IDLE
    assert manager.current_session is None
    assert recorder.states(handle.session_id)[-2:] == [ScanState.DONE, ScanState.IDLE]


def test_failing_listener_does_not_block_delivery(registry):
    delivered = []

    def broken(result):
        raise RuntimeError("listener bug")

    async def scenario():
        manager = ScanSessionManager(
            make_pipeline(registry, FakeRecognitionBackend(DRIVER_LICENSE)), on_result=broken
        )
        manager.add_result_listener(delivered.append)
        return await manager.wait(manager.submit_capture(card_png(), "png"))

    result = asyncio.run(scenario())

    assert delivered == [result]


def test_submit_requires_a_running_loop(registry):
    manager = ScanSessionManager(make_pipeline(registry, FakeRecognitionBackend()))

    with pytest.raises(RuntimeError):
        manager.submit_capture(card_png(), "png")


def test_illegal_transitions_are_rejected():
    session = ScanSession("abc", 1)

    with pytest.raises(InvalidTransitionError):
        session.transition(ScanState.DONE)

    session.transition(ScanState.CAPTURING)
    with pytest.raises(InvalidTransitionError):
        session.transition(ScanState.EXTRACTING)


def test_pipeline_runs_without_a_manager(registry):
    pipeline = make_pipeline(registry, FakeRecognitionBackend(DRIVER_LICENSE))

    result = asyncio.run(pipeline.run(RawCapture(card_png(), "png"), today=TODAY))

    assert result.status is ScanStatus.COMPLETE
    assert result.fields["eyeColor"].normalized_value == "Brown"


def test_pipeline_turns_foreign_errors_into_a_failed_result(registry):
    class BrokenBackend(FakeRecognitionBackend):
        async def recognize(self, image):
            raise ConnectionError("remote engine refused connection")

    pipeline = make_pipeline(registry, BrokenBackend())

    result = asyncio.run(pipeline.run(RawCapture(card_png(), "png"), today=TODAY))

    assert result.status is ScanStatus.FAILED
    assert result.template_id == "generic-id-v1"
    assert "remote engine refused connection" in result.errors[0]
    assert "normalize" in result.timings


def test_retried_scan_yields_the_same_result(registry):
    def scan(backend):
        recorder = Recorder()

        async def scenario():
            manager = recorder.manager(registry, backend)
            return await manager.wait(manager.submit_capture(card_png(), "png"))

        payload = asyncio.run(scenario()).to_dict()
        for key in ("timings", "session_id", "created_at"):
            payload.pop(key)
        return payload

    flaky_backend = FakeRecognitionBackend(DRIVER_LICENSE, failures=2)

    clean = scan(FakeRecognitionBackend(DRIVER_LICENSE))
    retried = scan(flaky_backend)

    assert flaky_backend.calls == 3
    assert retried == clean
    assert retried["status"] == "Complete"
