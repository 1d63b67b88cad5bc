"""
Typed records flowing from the watch service to the sync worker.

Notification is what a WatchKey hands out for one entry of its directory,
ChangeEvent is a notification resolved to an absolute path, and SyncTask is the
normalized unit of work placed on the sync queue.
"""
from enum import Enum
from pathlib import Path
from dataclasses import dataclass


class EventKind(Enum):
    """Closed set of notification kinds reported by the watch service"""
    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"
    OVERFLOW = "overflow"


class SyncKind(Enum):
    """Remote operation to perform for a path"""
    UPSERT = "upsert"
    REMOVE = "remove"


@dataclass(frozen=True)
class Notification:
    """
    A single change reported for an entry of a watched directory.
    name is relative to the directory of the WatchKey the notification was
    polled from; it is None for OVERFLOW. count is the number of identical
    consecutive notifications folded into this one.
    """
    kind: EventKind
    name: Path | None = None
    count: int = 1

    def __str__(self) -> str:
        return f"Notification({self.kind.value}, {self.name!s}, count={self.count})"


@dataclass(frozen=True)
class ChangeEvent:
    """A notification resolved against its watched directory"""
    path: Path
    kind: EventKind

    def __str__(self) -> str:
        return f"{self.kind.name}: {self.path}"


@dataclass(frozen=True)
class SyncTask:
    """
    Unit of work for the sync worker. Created and Modified both become UPSERT,
    Deleted becomes REMOVE, and OVERFLOW never produces a task.
    """
    path: Path
    kind: SyncKind

    @classmethod
    def from_change(cls, event: ChangeEvent) -> "SyncTask | None":
        """returns the task for a change event, None for OVERFLOW"""
        match event.kind:
            case EventKind.CREATED | EventKind.MODIFIED:
                return cls(path=event.path, kind=SyncKind.UPSERT)
            case EventKind.DELETED:
                return cls(path=event.path, kind=SyncKind.REMOVE)
            case _:
                return None

    def __str__(self) -> str:
        return f"SyncTask({self.kind.value}, {self.path})"
