"""Logging for httpmirror, configured from a JSON file with dictConfig.

The configuration references the classes below by dotted name:
JSONLineFormatter writes the rotating .jsonl file, NonErrorFilter keeps
warnings off stdout, and KeywordFilter, attached to the queue handler,
masks the HTTP password before a record reaches any handler.
setup_logging() also installs hooks so exceptions escaping the main thread
or the sync worker thread end up in the logs.
"""
from pathlib import Path
import atexit
import datetime as dt
import json
import logging
from logging import Logger, LogRecord
import logging.config
import sys
import threading
from typing import Any, Type, override
from types import TracebackType

import constants

def setup_logging(logging_config: Path) -> Path:
    """Apply the JSON logging configuration in logging_config.

    Folders for file handlers are created first. If the configuration has a
    handler named "queue_handler" its listener is started and stopped at exit.
    Returns the log folder, i.e. the folder of the last file handler found.
    Exits with a usage error if the file cannot be read or parsed.
    """
    try:
        config: dict[str, Any] = json.loads(Path(logging_config).read_text(encoding="utf-8"))
    except FileNotFoundError:
        print(f"Logging config file {logging_config} not found", file=sys.stderr)
        sys.exit(constants.ExitCode.EXIT_FAILED_CLICK_USAGE.value)
    except json.JSONDecodeError as e:
        print(f"Logging config file {logging_config} is not valid JSON: {e}", file=sys.stderr)
        sys.exit(constants.ExitCode.EXIT_FAILED_CLICK_USAGE.value)

    log_path: Path = Path()
    filenames = [h["filename"] for h in config.get("handlers", {}).values() if h.get("filename")]
    for filename in filenames:
        log_path = Path(filename).parent
        log_path.mkdir(parents=True, exist_ok=True)

    logging.config.dictConfig(config)
    listener = getattr(logging.getHandlerByName("queue_handler"), "listener", None)
    if listener is not None:
        listener.start()
        atexit.register(listener.stop)

    sys.excepthook = handle_unhandled_exception
    threading.excepthook = handle_thread_exception
    logging.getLogger(__name__).debug("logging configured from %s", logging_config)
    return log_path

def handle_unhandled_exception(exc_type: Type[BaseException],
                               exc_value: BaseException,
                               exc_traceback: TracebackType) -> None:
    """
    sys.excepthook: log exceptions that escape the main thread.
    Ctrl+C is left to the default hook.
    """
    if issubclass(exc_type, KeyboardInterrupt):
        sys.__excepthook__(exc_type, exc_value, exc_traceback)
        return
    logging.getLogger("unhandled").critical("**** unhandled exception in main thread ****",
                                            exc_info=(exc_type, exc_value, exc_traceback))

def handle_thread_exception(args: threading.ExceptHookArgs) -> None:
    """threading.excepthook: log exceptions that end a thread."""
    thread_name = args.thread.name if args.thread is not None else "unknown"
    logging.getLogger("unhandled").critical("**** unhandled exception in thread %s ****", thread_name,
                                            exc_info=(args.exc_type, args.exc_value, args.exc_traceback))

# attributes every LogRecord has; anything else on a record came in through extra=
LOG_RECORD_BUILTIN_ATTRS: frozenset[str] = frozenset(
    vars(LogRecord("", logging.NOTSET, "", 0, "", None, None))) | {"message", "asctime", "taskName"}


class JSONLineFormatter(logging.Formatter):
    """Formats each record as one line of JSON.

    fmt_keys maps output keys to record attributes. The formatted message and
    an ISO 8601 UTC timestamp are always included, exception and stack text
    when present, and every attribute passed with extra= as it is.
    """
    def __init__(self, *, fmt_keys: dict[str, str] | None = None) -> None:
        super().__init__()
        self.fmt_keys: dict[str, str] = dict(fmt_keys or {})

    @override
    def format(self, record: LogRecord) -> str:
        return json.dumps(self._to_dict(record), default=str)

    def _to_dict(self, record: LogRecord) -> dict[str, Any]:
        computed: dict[str, Any] = {
            "message": record.getMessage(),
            "timestamp": dt.datetime.fromtimestamp(record.created, tz=dt.timezone.utc).isoformat(),
        }
        if record.exc_info:
            computed["exc_info"] = self.formatException(record.exc_info)
        if record.stack_info:
            computed["stack_info"] = self.formatStack(record.stack_info)

        out: dict[str, Any] = {}
        for key, attr in self.fmt_keys.items():
            out[key] = computed.pop(attr) if attr in computed else getattr(record, attr, None)
        out.update(computed)
        out.update({k: v for k, v in vars(record).items() if k not in LOG_RECORD_BUILTIN_ATTRS})
        return out

class NonErrorFilter(logging.Filter):
    """Passes DEBUG and INFO records only."""
    @override
    def filter(self, record: LogRecord) -> bool:
        return record.levelno <= logging.INFO

class KeywordFilter(logging.Filter):
    """Replaces registered keywords with asterisks in log messages.

    The keyword list is shared by all instances, so a password registered
    after dictConfig created the filter is still masked. Records are never
    dropped.
    """
    _keywords: list[str] = []

    @override
    def filter(self, record: LogRecord) -> bool:
        message: str = record.getMessage()
        masked: str = message
        for keyword in self._keywords:
            masked = masked.replace(keyword, "*" * len(keyword))
        if masked != message:
            record.msg, record.args = masked, None
        return True

    @classmethod
    def add_keyword(cls, keyword: str) -> None:
        """Mask keyword in every message logged from now on."""
        if keyword and keyword not in cls._keywords:
            cls._keywords.append(keyword)

    @classmethod
    def clear_keywords(cls) -> None:
        """Forget all registered keywords."""
        cls._keywords.clear()
