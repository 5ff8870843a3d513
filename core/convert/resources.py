"""Track sub-resource loads (fonts, images) and wait on their completion set."""

from __future__ import annotations

from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from types import TracebackType
from typing import Any


@dataclass
class ResourceReadiness:
    """Snapshot of resource loads after waiting."""

    loaded: dict[str, Any] = field(default_factory=dict)
    failed: dict[str, str] = field(default_factory=dict)
    timed_out: list[str] = field(default_factory=list)

    @property
    def missing(self) -> list[str]:
        return sorted([*self.failed, *self.timed_out])


class ResourceTracker:
    """Run loaders in a small pool; readiness means every loader has finished.

    wait_ready() is bounded by a timeout. Loads still running past the bound are
    reported as timed out and their results are ignored.
    """

    def __init__(self, max_workers: int = 4) -> None:
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="recordprint-resource"
        )
        self._pending: dict[str, Future[Any]] = {}

    def __enter__(self) -> ResourceTracker:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    @property
    def outstanding(self) -> int:
        return sum(1 for future in self._pending.values() if not future.done())

    def submit(self, key: str, loader: Callable[[], Any]) -> None:
        if key in self._pending:
            return
        self._pending[key] = self._executor.submit(loader)

    def wait_ready(self, timeout: float | None) -> ResourceReadiness:
        readiness = ResourceReadiness()
        if not self._pending:
            return readiness

        _, not_done = wait(self._pending.values(), timeout=timeout)
        for key, future in self._pending.items():
            if future in not_done:
                future.cancel()
                readiness.timed_out.append(key)
                continue
            error = future.exception()
            if error is not None:
                readiness.failed[key] = f"{type(error).__name__}: {error}"
            else:
                readiness.loaded[key] = future.result()
        return readiness

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
