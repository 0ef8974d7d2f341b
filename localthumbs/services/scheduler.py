"""Bounded worker lanes that separate network I/O from media processing.

The I/O lane runs downloads and per-file existence checks with a small
configurable concurrency. The media lane has exactly one worker, so ffprobe
and ffmpeg never run concurrently with each other. Jobs themselves run on a
third bounded pool and hand their heavy steps to the two lanes.
"""

import threading
import time
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, TypeVar

from localthumbs.services.log_service import get_log_service


T = TypeVar("T")

DEFAULT_IO_CONCURRENCY = 2
MEDIA_CONCURRENCY = 1
DEFAULT_JOB_CONCURRENCY = 3


class Lane:
    """A FIFO worker pool with a fixed concurrency limit.

    Tracks how many submissions are waiting and how many are running so the
    driver can tell when the lane has drained.
    """

    def __init__(self, name: str, limit: int) -> None:
        if limit < 1:
            raise ValueError(f"Lane {name!r} needs a concurrency limit of at least 1")
        self.name = name
        self.limit = limit
        self._executor = ThreadPoolExecutor(max_workers=limit, thread_name_prefix=f"lane-{name}")
        self._lock = threading.Lock()
        self._running = 0
        self._pending = 0

    @property
    def running(self) -> int:
        with self._lock:
            return self._running

    @property
    def pending(self) -> int:
        with self._lock:
            return self._pending

    def is_idle(self) -> bool:
        with self._lock:
            return self._running == 0 and self._pending == 0

    def submit(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> "Future[T]":
        """Queue ``fn`` and return a future for its result.

        A failing call frees its slot the same way a successful one does.
        """

        def run() -> T:
            with self._lock:
                self._pending -= 1
                self._running += 1
            try:
                return fn(*args, **kwargs)
            finally:
                with self._lock:
                    self._running -= 1

        with self._lock:
            self._pending += 1
        try:
            return self._executor.submit(run)
        except RuntimeError:
            with self._lock:
                self._pending -= 1
            raise

    def call(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run ``fn`` inside this lane and wait for its result."""
        return self.submit(fn, *args, **kwargs).result()

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


class JobScheduler:
    """Owns the I/O lane, the media lane and the job pool."""

    def __init__(
        self,
        io_concurrency: int = DEFAULT_IO_CONCURRENCY,
        job_concurrency: int = DEFAULT_JOB_CONCURRENCY,
    ) -> None:
        self.io = Lane("io", io_concurrency)
        self.media = Lane("media", MEDIA_CONCURRENCY)
        self.jobs = Lane("jobs", job_concurrency)

    def submit_job(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future[Any]:
        """Dispatch a job without waiting for it.

        Exceptions that escape the job are logged when the future settles.
        """
        future = self.jobs.submit(fn, *args, **kwargs)
        future.add_done_callback(self._report_job_fault)
        return future

    @staticmethod
    def _report_job_fault(future: Future[Any]) -> None:
        exc = future.exception()
        if exc is None:
            return
        get_log_service().error(
            "scheduler",
            "job_fault",
            f"Unhandled error in job: {exc}",
            {"error": str(exc), "type": type(exc).__name__},
        )

    def is_idle(self) -> bool:
        """True when no job, download, probe or extraction is queued or running."""
        return self.jobs.is_idle() and self.io.is_idle() and self.media.is_idle()

    def wait_idle(self, poll_interval: float = 1.0) -> None:
        """Block until every lane has drained."""
        while not self.is_idle():
            time.sleep(poll_interval)

    def shutdown(self) -> None:
        for lane in (self.jobs, self.io, self.media):
            lane.shutdown(wait=True)
