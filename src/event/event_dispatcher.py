import os
import logging
from pathlib import Path

from context import Context
from event.watch_event import ChangeEvent, EventKind, Notification, SyncKind, SyncTask
from model.directory_registry import DirectoryRegistry
from model.ignore_filter import IgnoreFilter
from model.sync_queue import SyncQueue
from watch.watch_service import WatchService, WatchKey

logger = logging.getLogger(__name__)

class EventDispatcher():
    """
        The EventDispatcher turns watch notifications into sync tasks:

        1. WATCH LOOP:
        - Blocks on the watch service until a key is signalled
        - Resolves the key to its directory through the registry; unknown keys are logged and skipped
        - Processes every pending notification of the key, then resets the key
        - A key that fails to reset is invalidated in the registry
        - The loop ends when the registry is empty, i.e. the whole watched tree is gone

        2. PER NOTIFICATION, IN ORDER:
        - OVERFLOW is logged and dropped; nothing is enqueued and the registry is untouched
        - The entry name is resolved against the key's directory
        - Ignored paths and ignored kinds are not synchronized
        - Otherwise DELETED, or any kind naming a regular file, is enqueued (UPSERT or REMOVE)
        - Regardless of the two ignore checks above, CREATED on a directory registers it
          recursively; the walk refuses ignored paths itself, and files found by the walk are
          enqueued as UPSERT since they may have been created before the watch existed
        - The first MODIFIED for such a file is dropped while its mtime and size are still
          what the walk saw, so the upload is not repeated once the worker took the task

        3. CONCURRENCY:
        - Runs on a single thread, the only user of the registry
        - Hands work to the sync worker only through the sync queue, so slow remote
          requests never delay notification processing
    """
    def __init__(self,
                 ctx: Context,
                 registry: DirectoryRegistry,
                 watch_service: WatchService,
                 sync_queue: SyncQueue,
                 ignore_filter: IgnoreFilter):
        self.ctx: Context = ctx
        self._registry: DirectoryRegistry = registry
        self._watch_service: WatchService = watch_service
        self._sync_queue: SyncQueue = sync_queue
        self._ignore_filter: IgnoreFilter = ignore_filter
        # files enqueued by a registration walk -> (mtime_ns, size) seen by the walk
        self._walked: dict[Path, tuple[int, int]] = {}

    def run(self) -> None:
        """Process notifications until no directory is watched anymore."""
        logger.info("Waiting for events to happen...")
        while True:
            key: WatchKey = self._watch_service.take()
            if self.dispatch(key):
                break
        logger.warning("all watched directories are inaccessible")

    def dispatch(self, key: WatchKey) -> bool:
        """
        Process the pending batch of one signalled key and reset it.
        Returns True when the registry became empty.
        """
        directory: Path | None = self._registry.get(key)
        if directory is None:
            logger.warning("watch key not recognized: %s", key)
            return False

        for notification in key.poll_events():
            self.process_notification(directory, notification)

        if not key.reset():
            return self._registry.invalidate(key)
        return False

    def process_notification(self, directory: Path, notification: Notification) -> None:
        """Handle one notification reported for an entry of directory."""
        if notification.kind is EventKind.OVERFLOW:
            logger.warning("events lost for %s (%d overflow)", directory, notification.count)
            return

        event = ChangeEvent(path=directory / notification.name, kind=notification.kind)
        logger.debug("%s", event)

        if not self._ignore_filter.should_ignore_path(event.path) and not self._ignore_filter.should_ignore_kind(event.kind):
            self._process(event)

        if event.kind is EventKind.CREATED and self.ctx.recursive and self._is_directory(event.path):
            for path in self._registry.register_recursive(event.path):
                signature = self._signature(path)
                if signature is not None:
                    self._walked[path] = signature
                self._enqueue(SyncTask(path=path, kind=SyncKind.UPSERT))

    def _process(self, event: ChangeEvent) -> None:
        walked = self._walked.pop(event.path, None)
        if event.kind is EventKind.MODIFIED and walked is not None and walked == self._signature(event.path):
            logger.debug("%s unchanged since the walk uploaded it", event.path)
            return
        if event.kind is EventKind.DELETED or self._is_regular_file(event.path):
            self._enqueue(SyncTask.from_change(event))

    def _enqueue(self, task: SyncTask) -> None:
        if self._sync_queue.put(task):
            logger.debug("enqueued %s", task)

    @staticmethod
    def _signature(path: Path) -> tuple[int, int] | None:
        try:
            st = os.stat(path, follow_symlinks=False)
        except OSError:
            return None
        return st.st_mtime_ns, st.st_size

    @staticmethod
    def _is_regular_file(path: Path) -> bool:
        return os.path.isfile(path) and not os.path.islink(path)

    @staticmethod
    def _is_directory(path: Path) -> bool:
        return os.path.isdir(path) and not os.path.islink(path)
