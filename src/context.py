"""
Context class to hold command-line params
"""
from pathlib import Path
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

import constants

@dataclass
class Context:
    """
    Context class holds command-line parameters
    """
    directory: Path
    endpoint: str = constants.DEFAULT_ENDPOINT
    username: str | None = None
    password: str | None = None
    ignore_patterns: list[str] = field(default_factory=list)
    logging_config: str = "logging-config.json"
    log_path: Path = Path()
    recursive: bool = True
    sync_on_start: bool = False
    http_timeout: float | None = None
    verify_tls: bool = True
    status_period: timedelta = timedelta(seconds=constants.STATUS_SECONDS)
    max_pending_events: int = constants.MAX_PENDING_EVENTS
    timeloop: Any = None
