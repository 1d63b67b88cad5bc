"""Constants"""
from enum import Enum, auto

DEFAULT_ENDPOINT: str = "http://localhost:4502/"
# Substrings, matched anywhere in the full path, case-sensitive
IGNORE_PATTERNS: tuple[str, ...] = (
    ".svn",
    ".vlt",
    "/svn-",
    "/vlt-",
    ".xml",
    ".git",
    "__jb_",
)
MAX_PENDING_EVENTS: int = 512
STATUS_SECONDS: int = 300
HTTP_TIMEOUT_SECONDS: int = 0

class ExitCode(Enum):
    """
    ExitCode definitions
    """
    EXIT_NORMAL: int = 0
    EXIT_FAILED_ALREADY_RUNNING: int = auto()
    EXIT_FAILED_CLICK_USAGE: int = auto()
    EXIT_FAILED_NOT_A_DIRECTORY: int = auto()
    EXIT_FAILED_CANNOT_WATCH: int = auto()
    EXIT_FAILED_EXCEPTION: int = auto()
