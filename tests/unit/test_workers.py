"""
Unit tests for the thread-per-connection worker group.
"""

import threading

import pytest

from httpproxy.core.workers import WorkerGroup, WorkerState


class TestWorkerGroup:
    """Tests for WorkerGroup."""

    def test_spawn_runs_function(self):
        """Test that spawned work runs with its arguments."""
        group = WorkerGroup()
        results = []

        worker = group.spawn(results.append, args=(42,))
        worker.join(timeout=5.0)

        assert results == [42]
        assert worker.state == WorkerState.STOPPED
        assert group.active_workers == 0
        assert group.stats["started"] == 1

    def test_worker_name(self):
        group = WorkerGroup()
        worker = group.spawn(lambda: None, name="Conn-abc")
        worker.join(timeout=5.0)
        assert worker.name == "Conn-abc"

    def test_failure_is_contained(self):
        """Test that an exception ends only its own worker."""
        group = WorkerGroup()

        def boom():
            raise ValueError("boom")

        failing = group.spawn(boom)
        failing.join(timeout=5.0)
        ok = group.spawn(lambda: None)
        ok.join(timeout=5.0)

        assert failing.failed
        assert not ok.failed
        assert group.stats == {"active": 0, "started": 2, "failed": 1}

    def test_blocked_worker_does_not_block_others(self):
        """Test that a stuck worker leaves new workers free to run."""
        group = WorkerGroup()
        release = threading.Event()
        done = threading.Event()

        group.spawn(release.wait, args=(10.0,))
        quick = group.spawn(done.set)
        quick.join(timeout=5.0)

        assert done.is_set()
        assert group.active_workers == 1

        release.set()
        assert group.shutdown(timeout=5.0)

    def test_shutdown_waits_for_workers(self):
        group = WorkerGroup()
        release = threading.Event()
        group.spawn(release.wait, args=(10.0,))

        threading.Timer(0.1, release.set).start()
        assert group.shutdown(timeout=5.0)
        assert group.active_workers == 0

    def test_shutdown_timeout(self):
        """Test that shutdown gives up on workers that outlive the timeout."""
        group = WorkerGroup()
        release = threading.Event()
        group.spawn(release.wait, args=(10.0,))

        try:
            assert group.shutdown(timeout=0.1) is False
            assert group.active_workers == 1
        finally:
            release.set()

    def test_spawn_after_shutdown(self):
        group = WorkerGroup()
        group.shutdown(timeout=1.0)
        with pytest.raises(RuntimeError):
            group.spawn(lambda: None)
