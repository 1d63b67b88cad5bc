"""
model.ignore_filter

Substring based ignore rules shared by the registration walk and the event
dispatcher.
"""
from pathlib import Path
from collections.abc import Iterable
import logging
from logging import Logger

import constants
from event.watch_event import EventKind

logger: Logger = logging.getLogger(__name__)


class IgnoreFilter():
    """
    Decides which paths and which notification kinds are not mirrored.

    A path is ignored when its string form contains any of the patterns,
    anywhere and case-sensitively. ".xml" therefore also matches a directory
    named "a.xml.d", which is accepted behavior. The built-in patterns are
    always active; extra patterns extend them.
    """

    def __init__(self, patterns: Iterable[str] | None = None) -> None:
        self._patterns: list[str] = list(constants.IGNORE_PATTERNS)
        for pattern in patterns or []:
            if pattern and pattern not in self._patterns:
                self._patterns.append(pattern)

    @property
    def patterns(self) -> list[str]:
        """Get the active ignore substrings, built-ins first."""
        return list(self._patterns)

    def should_ignore_path(self, path: Path | str) -> bool:
        """True if any pattern occurs in the path's string form"""
        s = str(path)
        for pattern in self._patterns:
            if pattern in s:
                return True
        return False

    @staticmethod
    def should_ignore_kind(kind: EventKind) -> bool:
        """
        True unless the kind is MODIFIED or DELETED. A bare CREATED is not
        synchronized on its own; the first MODIFIED that follows it is.
        """
        return kind not in (EventKind.MODIFIED, EventKind.DELETED)
