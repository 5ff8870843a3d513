from __future__ import annotations

import threading

from core.convert.resources import ResourceTracker


def test_wait_ready_collects_loaded_and_failed_resources() -> None:
    def broken() -> bytes:
        raise OSError("unreadable")

    with ResourceTracker(max_workers=2) as tracker:
        tracker.submit("font:regular", lambda: b"font")
        tracker.submit("image:/a.png", broken)
        readiness = tracker.wait_ready(timeout=5)

    assert readiness.loaded == {"font:regular": b"font"}
    assert "OSError" in readiness.failed["image:/a.png"]
    assert readiness.missing == ["image:/a.png"]


def test_wait_ready_is_bounded_by_timeout() -> None:
    release = threading.Event()

    with ResourceTracker(max_workers=1) as tracker:
        tracker.submit("image:/slow.png", lambda: release.wait(5))
        readiness = tracker.wait_ready(timeout=0.05)
        release.set()

    assert readiness.timed_out == ["image:/slow.png"]
    assert readiness.loaded == {}


def test_duplicate_keys_are_loaded_once() -> None:
    calls: list[str] = []

    with ResourceTracker() as tracker:
        tracker.submit("k", lambda: calls.append("first"))
        tracker.submit("k", lambda: calls.append("second"))
        tracker.wait_ready(timeout=5)

    assert calls == ["first"]


def test_no_resources_is_immediately_ready() -> None:
    with ResourceTracker() as tracker:
        readiness = tracker.wait_ready(timeout=0)

    assert readiness.missing == []
    assert tracker.outstanding == 0
