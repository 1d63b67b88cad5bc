"""
model.sync_queue

Unbounded FIFO of SyncTasks between the event dispatcher and the sync worker.
"""
from threading import Lock
from queue import Queue
import logging
from logging import Logger

from event.watch_event import SyncTask, SyncKind

logger: Logger = logging.getLogger(__name__)


class SyncQueue():
    """
    Blocking FIFO of SyncTasks, any number of producers, one consumer.

    put() coalesces a task into the pending one when the most recent task
    still waiting for the same path has the same kind: the worker reads the
    file when it sends it, so a second identical task would only repeat the
    request. Tasks of a different kind are always accepted, so the order of
    operations per path is preserved. Accepted tasks are never dropped or
    reordered.
    """
    def __init__(self) -> None:
        self._queue: Queue = Queue()
        self._lock: Lock = Lock()
        # path -> (kind of the most recent pending task, number of pending tasks)
        self._pending: dict[str, tuple[SyncKind, int]] = {}

    def put(self, task: SyncTask) -> bool:
        """Enqueue task. Returns False when it was coalesced into a pending task."""
        key = str(task.path)
        with self._lock:
            kind, count = self._pending.get(key, (None, 0))
            if kind is task.kind:
                logger.debug("coalesced %s", task)
                return False
            self._pending[key] = (task.kind, count + 1)
            self._queue.put(task)
        return True

    def take(self) -> SyncTask:
        """Remove and return the oldest task, waiting until one is available."""
        task: SyncTask = self._queue.get()
        key = str(task.path)
        with self._lock:
            kind, count = self._pending.get(key, (task.kind, 1))
            if count <= 1:
                self._pending.pop(key, None)
            else:
                self._pending[key] = (kind, count - 1)
        return task

    def task_done(self) -> None:
        """Acknowledge that a task returned by take() has been processed."""
        self._queue.task_done()

    def join(self) -> None:
        """Block until every accepted task has been processed."""
        self._queue.join()

    def qsize(self) -> int:
        """Approximate number of pending tasks."""
        return self._queue.qsize()

    def empty(self) -> bool:
        """True if no task is pending."""
        return self._queue.empty()
