"""
remote.sync_worker

Daemon thread draining the sync queue into the remote store.
"""
import logging
import traceback
from threading import Thread
from dataclasses import dataclass

from event.watch_event import SyncTask, SyncKind
from model.action_result import ActionResult, Put
from model.sync_queue import SyncQueue
from remote.remote_store import RemoteStore

logger = logging.getLogger(__name__)


@dataclass
class SyncStats:
    """Counters updated by the worker, read by the status job."""
    uploaded: int = 0
    deleted: int = 0
    failed: int = 0


class SyncWorker(Thread):
    """
    Takes tasks off the queue one at a time and performs the matching
    request. Each task is attempted exactly once: a failure is logged and
    counted, and the worker moves on to the next task. The thread is a
    daemon and runs until the process ends.
    """
    def __init__(self, sync_queue: SyncQueue, store: RemoteStore, name: str = "sync-worker") -> None:
        super().__init__(name=name, daemon=True)
        self._queue: SyncQueue = sync_queue
        self._store: RemoteStore = store
        self.stats: SyncStats = SyncStats()

    def run(self) -> None:
        logger.debug("sync worker started, endpoint %s", self._store.endpoint)
        while True:
            task: SyncTask = self._queue.take()
            try:
                self.process(task)
            except Exception as e:
                self.stats.failed += 1
                logger.error("exception processing %s: %s %s", task, e.__class__.__name__, e)
                logger.error(traceback.format_exc())
            finally:
                self._queue.task_done()

    def process(self, task: SyncTask) -> ActionResult:
        """Send the request for one task and record the outcome."""
        logger.debug("processing %s", task)
        match task.kind:
            case SyncKind.REMOVE:
                result = self._store.delete(task.path)
            case SyncKind.UPSERT:
                result = self._store.put(task.path)
        self._handle_action_result(result)
        return result

    def _handle_action_result(self, result: ActionResult) -> None:
        if not result.success:
            self.stats.failed += 1
            logger.error("%s: %s", result, result.exception)
            return
        logger.info("%s", result)
        if isinstance(result, Put):
            self.stats.uploaded += 1
        else:
            self.stats.deleted += 1

    def log_status(self) -> None:
        """Periodic job: report queue depth and counters."""
        logger.info("%d tasks pending, %d uploaded, %d deleted, %d failed",
                    self._queue.qsize(), self.stats.uploaded, self.stats.deleted, self.stats.failed)
