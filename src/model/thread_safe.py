"""Thread-safe mapping keyed by directory path.

The watch service keeps its directory -> WatchKey table here. Registration
runs on the dispatcher thread while invalid keys are unscheduled from
whichever thread reset or cancelled them, so every access takes a reentrant
lock. Keys may be given as str or Path; both map to the same entry.
"""
from threading import RLock
from pathlib import Path
from collections import UserDict
from typing import Any, Iterator


class ThreadSafePathDict(UserDict):
    """
    UserDict guarded by an RLock, with str(Path(key)) as the stored key.
    Use 'with d:' to make a lookup and an update one atomic step.
    """

    def __init__(self, *args, **kwargs) -> None:
        self._lock: RLock = RLock()
        super().__init__(*args, **kwargs)

    @staticmethod
    def _key(key: str | Path) -> str:
        return str(Path(key))

    def __enter__(self) -> "ThreadSafePathDict":
        self._lock.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self._lock.release()

    def __getitem__(self, key: str | Path) -> Any:
        with self._lock:
            return self.data[self._key(key)]

    def __setitem__(self, key: str | Path, value: Any) -> None:
        with self._lock:
            self.data[self._key(key)] = value

    def __delitem__(self, key: str | Path) -> None:
        with self._lock:
            del self.data[self._key(key)]

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return isinstance(key, (str, Path)) and self._key(key) in self.data

    def __len__(self) -> int:
        with self._lock:
            return len(self.data)

    def __iter__(self) -> Iterator[str]:
        # iterate over a snapshot so other threads may keep updating
        with self._lock:
            return iter(list(self.data))

    def get(self, key: str | Path, default: Any = None) -> Any:
        with self._lock:
            return self.data.get(self._key(key), default)

    def pop_if(self, key: str | Path, value: Any) -> bool:
        """Remove key only while it still maps to this very value. Returns True if removed."""
        k = self._key(key)
        with self._lock:
            if self.data.get(k) is not value:
                return False
            del self.data[k]
            return True

    def __repr__(self) -> str:
        with self._lock:
            return f"ThreadSafePathDict({self.data!r})"
