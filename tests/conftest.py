from __future__ import annotations

import time
from pathlib import Path

import pytest
import requests

from context import Context
from watch.watch_service import WatchService


class FakeWatch:
    def __init__(self, path: str) -> None:
        self.path = path

    def __repr__(self) -> str:
        return f"FakeWatch({self.path})"


class FakeObserver:
    """Stands in for a watchdog observer; events are delivered with emit()."""

    def __init__(self) -> None:
        self.handlers: dict[str, object] = {}
        self.scheduled: list[str] = []
        self.unscheduled: list[str] = []
        self.fail_paths: set[str] = set()
        self.recursive: dict[str, bool] = {}
        self.started = False

    def start(self) -> None:
        self.started = True

    def stop(self) -> None:
        self.started = False

    def join(self, timeout: float | None = None) -> None:
        pass

    def schedule(self, handler, path, recursive=False):
        if path in self.fail_paths:
            raise PermissionError(13, "Permission denied", path)
        self.handlers[path] = handler
        self.recursive[path] = recursive
        self.scheduled.append(path)
        return FakeWatch(path)

    def unschedule(self, watch) -> None:
        if watch.path not in self.handlers:
            raise KeyError(watch)
        del self.handlers[watch.path]
        self.unscheduled.append(watch.path)

    def emit(self, event) -> None:
        # every handler sees every event and drops what lies outside its watch
        for handler in list(self.handlers.values()):
            handler.dispatch(event)


class FakeResponse:
    def __init__(self, status_code: int = 200) -> None:
        self.status_code = status_code

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error", response=self)


class FakeSession:
    """Records requests instead of sending them."""

    def __init__(self, status_code: int = 201, errors: list[Exception] | None = None) -> None:
        self.status_code = status_code
        self.errors = list(errors or [])
        self.calls: list[tuple[str, str, bytes | None]] = []
        self.auth = None
        self.verify = True
        self.closed = False

    def _respond(self, method: str, url: str, body: bytes | None) -> FakeResponse:
        self.calls.append((method, url, body))
        if self.errors:
            raise self.errors.pop(0)
        return FakeResponse(self.status_code)

    def put(self, url, data=None, timeout=None):
        body = data.read() if hasattr(data, "read") else data
        return self._respond("PUT", url, body)

    def delete(self, url, timeout=None):
        return self._respond("DELETE", url, None)

    def close(self) -> None:
        self.closed = True


def wait_for(predicate, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture
def root(tmp_path: Path) -> Path:
    directory = tmp_path / "w"
    directory.mkdir()
    return directory


@pytest.fixture
def observer() -> FakeObserver:
    return FakeObserver()


@pytest.fixture
def watch_service(observer: FakeObserver) -> WatchService:
    service = WatchService(observer=observer)
    service.start()
    return service


@pytest.fixture
def ctx(root: Path) -> Context:
    return Context(directory=root, endpoint="http://localhost:4502/", timeloop=None)


@pytest.fixture
def session() -> FakeSession:
    return FakeSession()
