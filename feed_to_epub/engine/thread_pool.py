"""Thread pool used to poll independent feeds side by side."""

from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor
from threading import Lock
from typing import Callable, Iterable, TypeVar

T = TypeVar("T")
R = TypeVar("R")


class ThreadPoolManager:
    """Own a lazily created executor shared by every poll cycle."""

    def __init__(self, max_workers: int = 1) -> None:
        self.max_workers = max_workers
        self._executor: ThreadPoolExecutor | None = None
        self._lock = Lock()

    def get(self) -> ThreadPoolExecutor:
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self.max_workers, thread_name_prefix="feed-poll"
                )
            return self._executor

    def map_ordered(self, func: Callable[[T], R], args: Iterable[T]) -> list[R]:
        """Run ``func`` over ``args`` and return results in submission order.

        Exceptions propagate from the first failing call in that order, after
        every submitted task has finished.
        """

        executor = self.get()
        futures: list[Future[R]] = [executor.submit(func, arg) for arg in args]
        results: list[R] = []
        error: BaseException | None = None
        for future in futures:
            try:
                results.append(future.result())
            except Exception as exc:  # noqa: BLE001
                if error is None:
                    error = exc
        if error is not None:
            raise error
        return results

    def shutdown(self) -> None:
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=True)


__all__ = ["ThreadPoolManager"]
