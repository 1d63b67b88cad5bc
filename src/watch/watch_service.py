"""
watch.watch_service

Handle based change notification service built on a watchdog observer.

A registered directory gets a WatchKey. Only the topmost registered
directory of a tree is scheduled on the observer, with one recursive watch,
so a tree costs one inotify instance however many directories it has.
Observer threads route each event to the key of the directory that holds the
changed entry and signal it; the consumer blocks in take(), drains the key
with poll_events() and re-arms it with reset().
"""
import os
import stat
import errno
import logging
from logging import Logger
from pathlib import Path
from dataclasses import replace
from threading import Lock
from queue import Queue, Empty
from typing import override

from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver, ObservedWatch
from watchdog.events import FileSystemEventHandler, FileSystemEvent

import constants
from event.watch_event import EventKind, Notification
from model.thread_safe import ThreadSafePathDict

logger: Logger = logging.getLogger(__name__)


def _identity(path: Path) -> tuple[int, int] | None:
    """(st_dev, st_ino) of the directory at path, None if there is none."""
    try:
        st = os.stat(path)
    except OSError:
        return None
    if not stat.S_ISDIR(st.st_mode):
        return None
    return st.st_dev, st.st_ino


class WatchKey():
    """
    Registration token for one watched directory.

    A key is bound to the directory that was at its path when it was issued:
    once that directory is deleted or replaced by another one with the same
    name, the key is no longer current and registering the path again issues
    a new key.

    A key is either ready or signalled. It becomes signalled when the first
    notification arrives, stays signalled while it is handed to the consumer,
    and goes back to ready on reset() if no further notifications are
    pending. A key that is no longer valid is never signalled again and its
    reset() returns False.
    """
    def __init__(self, service: "WatchService", directory: Path, identity: tuple[int, int], max_events: int) -> None:
        self._service: WatchService = service
        self._directory: Path = directory
        self._identity: tuple[int, int] = identity
        self._max_events: int = max_events
        self._lock: Lock = Lock()
        self._events: list[Notification] = []
        self._signalled: bool = False
        self._valid: bool = True
        # set on the key whose directory is scheduled on the observer
        self.watch: ObservedWatch | None = None

    @property
    def directory(self) -> Path:
        """The directory this key watches."""
        return self._directory

    @property
    def valid(self) -> bool:
        """False once the directory went away or the key was cancelled."""
        return self._valid

    def is_current(self) -> bool:
        """True while the directory this key was issued for is still at its path."""
        return _identity(self._directory) == self._identity

    def signal_event(self, kind: EventKind, name: Path | None) -> None:
        """
        Append a notification and signal the key.
        When the pending batch is full the batch is discarded and replaced by
        a single OVERFLOW. Repeated MODIFIED (or OVERFLOW) notifications for
        the same name are folded into the last one.
        """
        with self._lock:
            if not self._valid:
                return
            if len(self._events) >= self._max_events:
                kind, name = EventKind.OVERFLOW, None
            if self._events:
                last = self._events[-1]
                if last.kind is kind and last.name == name and kind in (EventKind.MODIFIED, EventKind.OVERFLOW):
                    self._events[-1] = replace(last, count=last.count + 1)
                    self._signal()
                    return
            if kind is EventKind.OVERFLOW:
                self._events.clear()
            self._events.append(Notification(kind=kind, name=name))
            self._signal()

    def poll_events(self) -> list[Notification]:
        """Drain and return the pending notifications."""
        with self._lock:
            events, self._events = self._events, []
        return events

    def reset(self) -> bool:
        """
        Re-arm the key. Returns False when the key is invalid; it is then
        removed from the service and its watch, if any, from the observer.
        """
        with self._lock:
            if self._valid and not self.is_current():
                self._valid = False
            if self._valid:
                if self._events:
                    # more arrived while the batch was being processed
                    self._service._enqueue(self)
                else:
                    self._signalled = False
                return True
        self._service._unschedule(self)
        return False

    def cancel(self) -> None:
        """Stop watching the directory."""
        with self._lock:
            self._valid = False
        self._service._unschedule(self)

    def invalidate(self) -> None:
        """
        Mark the key invalid because its directory was deleted, moved or
        replaced, and signal it so the consumer learns about it. Pending
        notifications are kept so the consumer still sees the deletions that
        preceded it.
        """
        with self._lock:
            if not self._valid:
                return
            self._valid = False
            logger.debug("watched directory %s is gone", self._directory)
            self._signal()

    def _signal(self) -> None:
        # caller holds self._lock
        if not self._signalled:
            self._signalled = True
            self._service._enqueue(self)

    def __repr__(self) -> str:
        return f"WatchKey({self._directory}, valid={self._valid})"


class _TreeEventHandler(FileSystemEventHandler):
    """
    Routes the watchdog events of one scheduled watch to WatchKeys.
    An event about an entry is reported on the key of the directory holding
    the entry; entries of directories without a key are dropped. An event
    saying a keyed directory was deleted or moved invalidates that key,
    unless the directory at that path is still the one the key was issued
    for. Outside a recursive watch only the root and its entries are seen.
    """
    def __init__(self, service: "WatchService", root: Path, recursive: bool) -> None:
        super().__init__()
        self._service: WatchService = service
        self._root: Path = root
        self._recursive: bool = recursive

    def _path(self, path: bytes | str) -> Path | None:
        p = Path(os.fsdecode(path))
        if p == self._root or p.parent == self._root:
            return p
        if self._recursive and self._root in p.parents:
            return p
        return None

    def _signal(self, kind: EventKind, path: bytes | str) -> None:
        p = self._path(path)
        if p is None or p == self._root:
            # the root itself is reported by the watch of its parent, if any
            return
        key = self._service._keys.get(p.parent)
        if key is not None:
            key.signal_event(kind, Path(p.name))

    def _gone(self, path: bytes | str) -> None:
        p = self._path(path)
        if p is None:
            return
        key = self._service._keys.get(p)
        if key is not None and not key.is_current():
            key.invalidate()

    @override
    def on_created(self, event: FileSystemEvent) -> None:
        self._signal(EventKind.CREATED, event.src_path)

    @override
    def on_modified(self, event: FileSystemEvent) -> None:
        self._signal(EventKind.MODIFIED, event.src_path)

    @override
    def on_deleted(self, event: FileSystemEvent) -> None:
        self._gone(event.src_path)
        self._signal(EventKind.DELETED, event.src_path)

    @override
    def on_moved(self, event: FileSystemEvent) -> None:
        self._gone(event.src_path)
        # a rename is reported as delete of the old name and create of the new one
        self._signal(EventKind.DELETED, event.src_path)
        self._signal(EventKind.CREATED, event.dest_path)


class WatchService():
    """
    WatchService

    Hands out one WatchKey per registered directory and delivers signalled
    keys to a single consumer.

    1. REGISTRATION:
    - register() returns the key of a directory, issuing a new one unless a
      valid key for the very same directory exists
    - in recursive mode a directory below an already scheduled one is only
      given a key; otherwise it is scheduled with a recursive watch, and
      watches of registered directories below it are folded into the new one
    - in non-recursive mode every directory gets its own non-recursive watch
    - a stale key left over for the same path is invalidated and signalled so
      the consumer drops it

    2. DELIVERY:
    - observer threads append notifications to keys and put signalled keys on
      an unbounded queue
    - take() blocks until a key is signalled, poll() waits with a timeout

    3. INVALIDATION:
    - deleting, moving or replacing a watched directory invalidates its key
    - reset() on an invalid key returns False and forgets the key
    """
    def __init__(self,
                 observer: BaseObserver | None = None,
                 max_pending_events: int = constants.MAX_PENDING_EVENTS,
                 recursive: bool = True) -> None:
        self._observer: BaseObserver = observer if observer is not None else Observer()
        self._max_pending_events: int = max_pending_events
        self._recursive: bool = recursive
        self._keys: ThreadSafePathDict = ThreadSafePathDict()
        self._signalled: Queue = Queue()

    def start(self) -> None:
        """Start the observer threads."""
        self._observer.start()

    def close(self) -> None:
        """Stop the observer and wait for its threads."""
        self._observer.stop()
        try:
            self._observer.join()
        except RuntimeError:
            # never started
            pass

    def register(self, directory: Path | str) -> WatchKey:
        """
        Watch directory for creation, modification and deletion of its
        entries. Raises OSError when the directory cannot be watched.
        """
        directory = Path(directory)
        if not directory.exists():
            raise FileNotFoundError(errno.ENOENT, os.strerror(errno.ENOENT), str(directory))
        identity = _identity(directory)
        if identity is None:
            raise NotADirectoryError(errno.ENOTDIR, os.strerror(errno.ENOTDIR), str(directory))

        with self._keys as keys:
            key: WatchKey = keys.get(directory)
            if key is not None:
                if key.valid and key._identity == identity:
                    return key
                logger.debug("replacing stale key for %s", directory)
                key.invalidate()
                self._unschedule(key)
            key = WatchKey(self, directory, identity, self._max_pending_events)
            if not self._is_covered(directory):
                key.watch = self._observer.schedule(_TreeEventHandler(self, directory, self._recursive),
                                                    str(directory),
                                                    recursive=self._recursive)
                self._fold_watches_below(key)
            keys[directory] = key
        return key

    def take(self) -> WatchKey:
        """Block until a key is signalled and return it."""
        return self._signalled.get()

    def poll(self, timeout: float | None = None) -> WatchKey | None:
        """Return the next signalled key, or None if none arrives within timeout seconds."""
        try:
            return self._signalled.get(timeout=timeout)
        except Empty:
            return None

    def __len__(self) -> int:
        return len(self._keys)

    def _is_covered(self, directory: Path) -> bool:
        # caller holds self._keys
        if not self._recursive:
            return False
        return any(k.watch is not None and k.directory in directory.parents for k in self._keys.values())

    def _fold_watches_below(self, key: WatchKey) -> None:
        # caller holds self._keys
        if not self._recursive:
            return
        for k in self._keys.values():
            if k.watch is not None and key.directory in k.directory.parents:
                logger.debug("watch of %s now covered by %s", k.directory, key.directory)
                self._remove_watch(k)

    def _enqueue(self, key: WatchKey) -> None:
        self._signalled.put(key)

    def _unschedule(self, key: WatchKey) -> None:
        self._keys.pop_if(key.directory, key)
        self._remove_watch(key)

    def _remove_watch(self, key: WatchKey) -> None:
        watch, key.watch = key.watch, None
        if watch is None:
            return
        try:
            self._observer.unschedule(watch)
        except KeyError:
            logger.debug("watch for %s already removed", key.directory)
