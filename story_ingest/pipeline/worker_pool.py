"""Bounded worker pool for batch processing."""

from __future__ import annotations

from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Callable, Iterator, Optional, Set, TypeVar

T = TypeVar("T")


class BatchWorkerPool:
    """ThreadPoolExecutor wrapper shared across one ingestion run.

    At most ``concurrency`` batches run at once; extra submissions queue in the
    executor. ``drain()`` yields results in completion order so a single
    caller thread can aggregate them.
    """

    def __init__(self, concurrency: int = 4, *, thread_name_prefix: str = "ingest-batch") -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self.concurrency = concurrency
        self._executor: Optional[ThreadPoolExecutor] = ThreadPoolExecutor(
            max_workers=concurrency, thread_name_prefix=thread_name_prefix
        )
        self._pending: Set[Future] = set()

    @property
    def in_flight(self) -> int:
        return sum(1 for f in self._pending if not f.done())

    def submit(self, fn: Callable[..., T], *args, **kwargs) -> Future:
        if self._executor is None:
            raise RuntimeError("worker pool is shut down")
        future = self._executor.submit(fn, *args, **kwargs)
        self._pending.add(future)
        return future

    def drain(self) -> Iterator[T]:
        """Yield results of every submitted task as they complete.

        Exceptions raised by a task propagate to the caller when its result
        is consumed.
        """
        while self._pending:
            done, _ = wait(self._pending, return_when=FIRST_COMPLETED)
            for future in done:
                self._pending.discard(future)
                yield future.result()

    def shutdown(self, wait_for_pending: bool = True) -> None:
        if self._executor is None:
            return
        self._executor.shutdown(wait=wait_for_pending, cancel_futures=not wait_for_pending)
        self._executor = None

    def __enter__(self) -> "BatchWorkerPool":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown(wait_for_pending=exc_type is None)
