from __future__ import annotations

import threading
import time

import pytest

from coordinator.errors import ReentrantCallError
from coordinator.guard import NonReentrantGuard


def test_same_thread_reentry_is_refused():
    guard = NonReentrantGuard()
    with guard:
        assert guard.held
        with pytest.raises(ReentrantCallError) as exc:
            with guard:
                pass
        assert exc.value.code == "reentrant_call"
        assert guard.held
    assert not guard.held


def test_released_after_exception():
    guard = NonReentrantGuard()
    with pytest.raises(RuntimeError):
        with guard:
            raise RuntimeError("boom")
    assert not guard.held
    with guard:
        assert guard.held


def test_other_threads_wait_their_turn():
    guard = NonReentrantGuard()
    inside = 0
    overlap = []
    lock = threading.Lock()

    def work():
        nonlocal inside
        with guard:
            with lock:
                inside += 1
                overlap.append(inside)
            time.sleep(0.01)
            with lock:
                inside -= 1

    threads = [threading.Thread(target=work) for _ in range(5)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=5)

    assert overlap == [1, 1, 1, 1, 1]
    assert not guard.held
