from __future__ import annotations

import threading
import time

import pytest

from bytelens.core.engine import ParseCancelled
from bytelens.core.registry import FormatRegistry
from bytelens.core.runtime import Runtime
from bytelens.core.worker import ParseRequest, ParseWorker

SCHEMA = """\
meta:
  id: pair
  endian: be
seq:
  - id: magic
    contents: "PR"
  - id: left
    type: u2
  - id: right
    type: u2
"""

DATA = b"PR\x00\x01\x00\x02"


class BlockingRuntime(Runtime):
    """Parses only once its cancel event is set."""

    def __init__(self) -> None:
        super().__init__(FormatRegistry())
        self.started = threading.Event()

    def parse(self, data, format_id=None, filename=None, cancel=None):
        self.started.set()
        cancel.wait(5)
        raise ParseCancelled()


class FailingRuntime(Runtime):
    def __init__(self) -> None:
        super().__init__(FormatRegistry())

    def parse(self, data, format_id=None, filename=None, cancel=None):
        raise RuntimeError("boom")


@pytest.fixture
def worker():
    registry = FormatRegistry()
    registry.register(SCHEMA)
    with ParseWorker(Runtime(registry)) as w:
        yield w


def test_full_parse(worker: ParseWorker) -> None:
    response = worker.parse(ParseRequest("r1", DATA))
    assert response.success
    assert response.request_id == "r1"
    assert response.root.child("right").value == 2
    assert response.nodes == ()
    assert response.elapsed >= 0


def test_range_parse(worker: ParseWorker) -> None:
    response = worker.parse(ParseRequest("r2", DATA, format_id="pair", start=2, end=4))
    assert response.success
    assert response.root is None
    assert [n.name for n in response.nodes] == ["left"]


def test_requests_are_independent(worker: ParseWorker) -> None:
    ids = [worker.submit(ParseRequest(f"q{i}", DATA)) for i in range(5)]
    responses = [worker.wait(i) for i in ids]
    assert [r.request_id for r in responses] == ids
    assert all(r.success for r in responses)
    assert worker.pending() == []


def test_unexpected_error_is_reported() -> None:
    with ParseWorker(FailingRuntime()) as w:
        response = w.parse(ParseRequest("bad", DATA))
    assert not response.success
    assert response.error == "RuntimeError: boom"


def test_timeout_sets_cancel_and_fails() -> None:
    runtime = BlockingRuntime()
    with ParseWorker(runtime, timeout=0.05) as w:
        response = w.parse(ParseRequest("slow", DATA))
        assert not response.success
        assert response.error == "Timed out after 0.05s"
        assert w.pending() == []


def test_cancel_pending_request() -> None:
    runtime = BlockingRuntime()
    with ParseWorker(runtime, timeout=5) as w:
        w.submit(ParseRequest("c1", DATA))
        assert runtime.started.wait(2)
        assert w.cancel("c1")
        response = w.wait("c1")
    assert not response.success
    assert response.error == "Cancelled"


def test_duplicate_pending_id_rejected() -> None:
    runtime = BlockingRuntime()
    with ParseWorker(runtime, timeout=5) as w:
        w.submit(ParseRequest("dup", DATA))
        with pytest.raises(ValueError):
            w.submit(ParseRequest("dup", DATA))
        w.cancel("dup")
        assert w.wait("dup").error == "Cancelled"


def test_unknown_ids(worker: ParseWorker) -> None:
    with pytest.raises(KeyError):
        worker.wait("nope")
    assert worker.cancel("nope") is False


def test_defaults_come_from_profile() -> None:
    runtime = Runtime(FormatRegistry())
    with ParseWorker(runtime) as w:
        assert w.timeout == runtime.profile.worker_timeout


def wait_until_finished(w: ParseWorker, request_id: str) -> None:
    deadline = time.monotonic() + 5
    while request_id in w.pending():
        assert time.monotonic() < deadline
        time.sleep(0.01)


def test_cancelled_id_can_be_reused() -> None:
    runtime = BlockingRuntime()
    with ParseWorker(runtime, timeout=5) as w:
        w.submit(ParseRequest("again", DATA))
        assert runtime.started.wait(2)
        w.cancel("again")
        wait_until_finished(w, "again")
        w.submit(ParseRequest("again", DATA))
        w.cancel("again")
        assert w.wait("again").error == "Cancelled"


def test_unclaimed_result_is_replaced(worker: ParseWorker) -> None:
    worker.submit(ParseRequest("once", DATA))
    wait_until_finished(worker, "once")
    worker.submit(ParseRequest("once", DATA, format_id="pair", start=2, end=4))
    response = worker.wait("once")
    assert response.root is None
    assert [n.name for n in response.nodes] == ["left"]
    assert worker.pending() == []
