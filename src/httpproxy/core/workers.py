"""
=============================================================================
THREAD-PER-CONNECTION WORKERS
=============================================================================

Every accepted connection gets its own worker thread, running a purely
blocking sequence from start to finish:

    read from client → connect upstream → send → relay response → close

=============================================================================
WHY NOT A FIXED-SIZE POOL?
=============================================================================

A proxy session holds its worker for as long as the upstream keeps
talking. With a bounded pool, N stalled upstreams would occupy all N
workers and every new client would wait behind them:

    Pool of 4:   [stalled] [stalled] [stalled] [stalled]   ← client 5 waits

With one thread per connection, a stalled session only ever blocks
itself. The cost is memory (one stack per live connection), which is
fine for a forwarding proxy's connection counts.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                        WorkerGroup                                   │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   spawn(func, args)  → ConnectionWorker (started immediately)       │
    │                                                                      │
    │   ConnectionWorker.run():                                            │
    │       state = BUSY                                                   │
    │       func(*args)          ← exceptions logged, never propagated     │
    │       state = STOPPED                                                │
    │       group._discard(self)                                           │
    │                                                                      │
    │   shutdown(timeout)  → join every live worker (bounded wait)        │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘
=============================================================================
"""

import threading
import time
import logging
from typing import Callable, Optional, Any
from enum import Enum


logger = logging.getLogger(__name__)


class WorkerState(Enum):
    """
    Worker thread states.

    Used for monitoring and debugging.
    """
    IDLE = "idle"        # Created, not started
    BUSY = "busy"        # Running its connection
    STOPPED = "stopped"  # Thread exited


class ConnectionWorker(threading.Thread):
    """
    Worker thread dedicated to one connection.

    The worker never lets an exception escape: a failing session is logged
    and ends, and nothing else notices.
    """

    def __init__(
        self,
        group: "WorkerGroup",
        worker_id: int,
        func: Callable[..., Any],
        args: tuple = (),
        name: Optional[str] = None,
    ):
        # daemon=True: a stuck upstream cannot keep the process alive
        super().__init__(name=name or f"Worker-{worker_id}", daemon=True)

        self.group = group
        self.worker_id = worker_id
        self.func = func
        self.args = args

        self.state = WorkerState.IDLE
        self.failed = False
        self.started_at = 0.0

    def run(self):
        self.state = WorkerState.BUSY
        self.started_at = time.time()
        try:
            self.func(*self.args)
        except Exception as e:
            self.failed = True
            logger.exception(f"{self.name} error: {e}")
        finally:
            self.state = WorkerState.STOPPED
            self.group._discard(self)
            logger.debug(f"{self.name} finished in {time.time() - self.started_at:.3f}s")


class WorkerGroup:
    """
    Spawns and tracks one worker thread per connection.

    Usage:
        group = WorkerGroup()
        group.spawn(handle_connection, args=(conn,))
        ...
        group.shutdown(timeout=5.0)   # wait for sessions to wind down
    """

    def __init__(self):
        self._workers: set[ConnectionWorker] = set()
        self._lock = threading.Lock()  # Protects _workers and counters
        self._next_worker_id = 0
        self._started_total = 0
        self._failed_total = 0
        self._shutdown = False

    def spawn(
        self,
        func: Callable[..., Any],
        args: tuple = (),
        name: Optional[str] = None,
    ) -> ConnectionWorker:
        """
        Start a new worker running func(*args).

        Raises:
            RuntimeError: If the group is shutting down or the thread
                          cannot be started.
        """
        with self._lock:
            if self._shutdown:
                raise RuntimeError("Worker group is shutting down")

            worker = ConnectionWorker(
                group=self,
                worker_id=self._next_worker_id,
                func=func,
                args=args,
                name=name,
            )
            self._next_worker_id += 1
            self._started_total += 1
            self._workers.add(worker)

        try:
            worker.start()
        except RuntimeError:
            # Out of threads: the worker never ran, so it must not be joined
            with self._lock:
                self._workers.discard(worker)
            raise
        return worker

    def _discard(self, worker: ConnectionWorker):
        """Called by a worker as it exits."""
        with self._lock:
            self._workers.discard(worker)
            if worker.failed:
                self._failed_total += 1

    def shutdown(self, timeout: Optional[float] = None) -> bool:
        """
        Stop accepting new work and wait for live workers.

        Args:
            timeout: Total time to wait across all workers.
                     None = wait until every worker exits.

        Returns:
            True if every worker exited, False if some were still running
            when the timeout expired (they are daemon threads and die with
            the process).
        """
        with self._lock:
            self._shutdown = True
            workers = list(self._workers)

        if workers:
            logger.info(f"Waiting for {len(workers)} active connection(s)...")

        deadline = None if timeout is None else time.time() + timeout
        for worker in workers:
            remaining = None if deadline is None else max(0.0, deadline - time.time())
            worker.join(timeout=remaining)

        still_running = self.active_workers
        if still_running:
            logger.warning(f"Shutdown timeout, {still_running} worker(s) still running")
        return still_running == 0

    # =========================================================================
    # MONITORING
    # =========================================================================

    @property
    def active_workers(self) -> int:
        """Get count of live workers."""
        with self._lock:
            return len(self._workers)

    @property
    def stats(self) -> dict:
        """
        Get worker statistics for monitoring and tests.
        """
        with self._lock:
            return {
                "active": len(self._workers),
                "started": self._started_total,
                "failed": self._failed_total,
            }
