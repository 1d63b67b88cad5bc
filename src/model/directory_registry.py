"""
model.directory_registry

Owns the mapping between watch keys and the directories they watch.
"""
from os import scandir
from pathlib import Path
import logging
from logging import Logger

from model.ignore_filter import IgnoreFilter
from watch.watch_service import WatchService, WatchKey

logger: Logger = logging.getLogger(__name__)


class DirectoryRegistry():
    """
    DirectoryRegistry

    Keeps exactly one live WatchKey per watched directory. Only the thread
    running the event dispatcher uses an instance, so the table is a plain
    dict.

    1. SINGLE REGISTRATION:
    - register_one() asks the watch service for a key and records key -> directory
    - the watch service returns the same key for a directory registered twice,
      so re-registering updates the entry instead of adding one

    2. RECURSIVE REGISTRATION:
    - register_recursive() walks a subtree depth-first with os.scandir()
    - ignored directories are neither registered nor descended into
    - symbolic links are not followed
    - directories that vanish or cannot be read during the walk are skipped
    - regular files met on the way are returned, never registered

    3. INVALIDATION:
    - invalidate() drops a key once its directory is gone
    - an empty registry means the whole watched tree is gone
    """

    def __init__(self, watch_service: WatchService, ignore_filter: IgnoreFilter) -> None:
        self._watch_service: WatchService = watch_service
        self._ignore_filter: IgnoreFilter = ignore_filter
        self._keys: dict[WatchKey, Path] = {}
        self._trace: bool = False

    def register_one(self, directory: Path) -> WatchKey | None:
        """Register a single directory. Returns None if it cannot be watched."""
        try:
            key = self._watch_service.register(directory)
        except OSError as e:
            logger.warning("cannot watch %s: (%s) %s", directory, e.__class__.__name__, e)
            return None
        previous = self._keys.get(key)
        if self._trace:
            if previous is None:
                logger.debug("register: %s", directory)
            elif previous != directory:
                logger.debug("update: %s -> %s", previous, directory)
        self._keys[key] = directory
        return key

    def register_recursive(self, start: Path) -> list[Path]:
        """
        Register start and every directory below it that is not ignored.
        Returns the regular files found under the registered directories.
        """
        files: list[Path] = []
        start = Path(start)
        if self._ignore_filter.should_ignore_path(start):
            logger.debug("not watching ignored directory %s", start)
            return files
        self._walk(start, files)
        # report registrations and updates once the initial scan is done
        self._trace = True
        return files

    def _walk(self, directory: Path, files: list[Path]) -> None:
        if self.register_one(directory) is None:
            return
        subdirectories: list[Path] = []
        try:
            with scandir(directory) as entries:
                for entry in entries:
                    path = Path(entry.path)
                    if self._ignore_filter.should_ignore_path(path):
                        continue
                    try:
                        if entry.is_dir(follow_symlinks=False):
                            subdirectories.append(path)
                        elif entry.is_file(follow_symlinks=False):
                            files.append(path)
                    except OSError:
                        continue
        except (FileNotFoundError, NotADirectoryError, PermissionError) as e:
            logger.warning("skipping %s: (%s) %s", directory, e.__class__.__name__, e)
            return
        for subdirectory in subdirectories:
            self._walk(subdirectory, files)

    def invalidate(self, key: WatchKey) -> bool:
        """
        Remove key from the registry. Returns True when no directory is
        watched anymore.
        """
        directory = self._keys.pop(key, None)
        if directory is not None:
            logger.info("no longer watching %s", directory)
        return not self._keys

    def get(self, key: WatchKey, default: Path | None = None) -> Path | None:
        """returns the directory watched by key"""
        return self._keys.get(key, default)

    @property
    def directories(self) -> list[Path]:
        """Watched directories, in registration order."""
        return list(self._keys.values())

    def __contains__(self, key: WatchKey) -> bool:
        return key in self._keys

    def __len__(self) -> int:
        return len(self._keys)
