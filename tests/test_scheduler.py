"""Tests for the lane scheduler."""

import threading
import time
from collections.abc import Callable

import pytest

from localthumbs.services.scheduler import MEDIA_CONCURRENCY, JobScheduler, Lane


def _tracker() -> tuple[Callable[[float], None], Callable[[], int]]:
    """Return a task that records peak concurrency, and a getter for the peak."""
    lock = threading.Lock()
    state = {"active": 0, "peak": 0}

    def task(delay: float) -> None:
        with lock:
            state["active"] += 1
            state["peak"] = max(state["peak"], state["active"])
        time.sleep(delay)
        with lock:
            state["active"] -= 1

    return task, lambda: state["peak"]


class TestLane:
    """Tests for a single bounded lane."""

    def test_rejects_zero_limit(self) -> None:
        """Test that a lane needs at least one worker."""
        with pytest.raises(ValueError):
            Lane("bad", 0)

    def test_returns_results(self) -> None:
        """Test that submit returns a future with the result."""
        lane = Lane("io", 2)
        try:
            assert lane.submit(lambda x: x * 2, 21).result() == 42
            assert lane.call(lambda: "ok") == "ok"
        finally:
            lane.shutdown()

    def test_never_exceeds_limit(self) -> None:
        """Test that running work stays within the concurrency limit."""
        task, peak = _tracker()
        lane = Lane("io", 3)
        try:
            futures = [lane.submit(task, 0.01) for _ in range(20)]
            for f in futures:
                f.result()
        finally:
            lane.shutdown()

        assert 1 <= peak() <= 3

    def test_fifo_start_order(self) -> None:
        """Test that queued work starts in submission order."""
        lane = Lane("media", 1)
        started: list[int] = []
        gate = threading.Event()

        def task(i: int) -> None:
            if i == 0:
                gate.wait(1)
            started.append(i)

        try:
            futures = [lane.submit(task, i) for i in range(5)]
            gate.set()
            for f in futures:
                f.result()
        finally:
            lane.shutdown()

        assert started == [0, 1, 2, 3, 4]

    def test_failure_frees_slot(self) -> None:
        """Test that an exception propagates and the next task still runs."""
        lane = Lane("io", 1)

        def boom() -> None:
            raise RuntimeError("boom")

        try:
            failed = lane.submit(boom)
            after = lane.submit(lambda: "next")
            with pytest.raises(RuntimeError):
                failed.result()
            assert after.result() == "next"
        finally:
            lane.shutdown()

        assert lane.is_idle()

    def test_counts_running_and_pending(self) -> None:
        """Test the running/pending counters used for idle detection."""
        lane = Lane("media", 1)
        release = threading.Event()
        started = threading.Event()

        def blocker() -> None:
            started.set()
            release.wait(2)

        try:
            first = lane.submit(blocker)
            second = lane.submit(lambda: None)
            started.wait(1)

            assert lane.running == 1
            assert lane.pending == 1
            assert not lane.is_idle()

            release.set()
            first.result()
            second.result()
        finally:
            lane.shutdown()

        assert lane.running == 0
        assert lane.pending == 0


class TestJobScheduler:
    """Tests for the two-lane scheduler."""

    def test_media_lane_is_serial(self) -> None:
        """Test that the media lane never runs two tasks at once."""
        task, peak = _tracker()
        sched = JobScheduler(io_concurrency=8, job_concurrency=8)
        try:
            jobs = [
                sched.submit_job(lambda: sched.media.call(task, 0.005)) for _ in range(16)
            ]
            for j in jobs:
                j.result()
        finally:
            sched.shutdown()

        assert sched.media.limit == MEDIA_CONCURRENCY == 1
        assert peak() == 1

    def test_io_lane_uses_configured_limit(self) -> None:
        """Test that the I/O lane size follows configuration."""
        sched = JobScheduler(io_concurrency=4)
        try:
            assert sched.io.limit == 4
        finally:
            sched.shutdown()

    def test_submit_job_does_not_block(self, scheduler: JobScheduler) -> None:
        """Test that job submission returns before the job finishes."""
        release = threading.Event()
        future = scheduler.submit_job(release.wait, 2)

        assert not future.done()
        release.set()
        future.result()

    def test_wait_idle_drains_everything(self, scheduler: JobScheduler) -> None:
        """Test that wait_idle returns only after nested lane work is done."""
        done: list[int] = []

        def job(i: int) -> None:
            scheduler.io.call(time.sleep, 0.01)
            scheduler.media.call(done.append, i)

        for i in range(6):
            scheduler.submit_job(job, i)
        scheduler.wait_idle(poll_interval=0.01)

        assert sorted(done) == list(range(6))
        assert scheduler.is_idle()

    def test_job_fault_is_logged(self, scheduler: JobScheduler) -> None:
        """Test that an escaping job exception is reported, not raised."""

        def boom() -> None:
            raise RuntimeError("kaput")

        future = scheduler.submit_job(boom)
        scheduler.wait_idle(poll_interval=0.01)

        assert isinstance(future.exception(), RuntimeError)
