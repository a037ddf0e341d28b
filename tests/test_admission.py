"""Tests covering single-flight queues and the active-token ceiling."""

from __future__ import annotations

import threading
import time
from concurrent.futures import Future
from typing import Iterator, List, Tuple

import pytest

from discpack.admission import AdmissionController
from discpack.errors import ServerBusyError


@pytest.fixture()
def controller() -> Iterator[AdmissionController]:
    admission = AdmissionController(max_active_tokens=2)
    yield admission
    admission.shutdown()


def test_work_for_one_token_never_overlaps(controller: AdmissionController) -> None:
    spans: List[Tuple[int, float, float]] = []
    spans_lock = threading.Lock()

    def make_work(index: int):
        def _work() -> int:
            started = time.monotonic()
            time.sleep(0.01)
            finished = time.monotonic()
            with spans_lock:
                spans.append((index, started, finished))
            return index

        return _work

    futures = [controller.submit("server-a", make_work(index)) for index in range(8)]
    results = [future.result(timeout=5) for future in futures]

    assert results == list(range(8))
    assert [index for index, _, _ in spans] == list(range(8))
    for (_, _, previous_end), (_, next_start, _) in zip(spans, spans[1:]):
        assert next_start >= previous_end


def test_concurrent_submitters_for_one_token_are_serialised(
    controller: AdmissionController,
) -> None:
    running = 0
    max_running = 0
    counter_lock = threading.Lock()

    def _work() -> None:
        nonlocal running, max_running
        with counter_lock:
            running += 1
            max_running = max(max_running, running)
        time.sleep(0.005)
        with counter_lock:
            running -= 1

    futures: List[Future] = []
    futures_lock = threading.Lock()

    def _submit() -> None:
        future = controller.submit("server-a", _work)
        with futures_lock:
            futures.append(future)

    threads = [threading.Thread(target=_submit) for _ in range(10)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    for future in futures:
        future.result(timeout=5)

    assert len(futures) == 10
    assert max_running == 1


def test_distinct_tokens_run_in_parallel(controller: AdmissionController) -> None:
    barrier = threading.Barrier(2, timeout=5)

    first = controller.submit("server-a", barrier.wait)
    second = controller.submit("server-b", barrier.wait)

    first.result(timeout=5)
    second.result(timeout=5)


def test_rejects_new_token_at_ceiling_and_accepts_after_drain(
    controller: AdmissionController,
) -> None:
    release = threading.Event()

    first = controller.submit("server-a", lambda: release.wait(5))
    second = controller.submit("server-b", lambda: release.wait(5))
    assert controller.active_tokens() == ["server-a", "server-b"]

    with pytest.raises(ServerBusyError):
        controller.submit("server-c", lambda: None)

    # An already active token still queues.
    queued = controller.submit("server-a", lambda: "queued")

    release.set()
    first.result(timeout=5)
    second.result(timeout=5)
    assert queued.result(timeout=5) == "queued"

    deadline = time.monotonic() + 5
    while controller.active_tokens() and time.monotonic() < deadline:
        time.sleep(0.01)
    assert controller.active_tokens() == []

    assert controller.submit("server-c", lambda: "accepted").result(timeout=5) == "accepted"


def test_failures_resolve_the_callers_future(controller: AdmissionController) -> None:
    def _boom() -> None:
        raise RuntimeError("stage failed")

    failing = controller.submit("server-a", _boom)
    following = controller.submit("server-a", lambda: "next")

    with pytest.raises(RuntimeError, match="stage failed"):
        failing.result(timeout=5)
    assert following.result(timeout=5) == "next"


def test_scheduling_errors_fail_the_future_instead_of_hanging() -> None:
    admission = AdmissionController(max_active_tokens=1)
    admission.shutdown()

    future = admission.submit("server-a", lambda: "never")

    with pytest.raises(RuntimeError):
        future.result(timeout=5)
    assert admission.active_tokens() == []
