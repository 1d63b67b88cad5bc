"""
remote.remote_store

HTTP client for the remote store: PUT uploads a file, DELETE removes it.
"""
import logging
import traceback
from pathlib import Path

import requests
from urllib3 import disable_warnings
from urllib3.exceptions import InsecureRequestWarning

from context import Context
from model.action_result import Put, Delete

logger = logging.getLogger(__name__)


class RemoteStore():
    """
    RemoteStore

    Maps local paths under the watched root to URLs under the endpoint and
    sends one request per call over a shared requests.Session, which keeps
    connections to the endpoint alive between calls.

    1. URL COMPOSITION:
    - the path is made relative to the root and appended, with forward
      slashes, to the endpoint as is; nothing is escaped

    2. OPERATIONS:
    - put() streams the current content of the file as the request body
    - delete() sends a DELETE for the URL
    - a response status of 400 or above counts as a failure

    3. ERROR HANDLING:
    - nothing is raised to the caller; every outcome is returned as a
      Put or Delete result carrying the exception on failure
    - handle_exception() logs failures according to their category
    """
    def __init__(self, ctx: Context, session: requests.Session | None = None) -> None:
        self._root_path: Path = Path(ctx.directory)
        self._endpoint: str = ctx.endpoint
        self._timeout: float | None = ctx.http_timeout or None
        self._session: requests.Session = session if session is not None else requests.Session()
        if ctx.username:
            self._session.auth = (ctx.username, ctx.password or "")
        if not ctx.verify_tls:
            disable_warnings(category=InsecureRequestWarning)
            self._session.verify = False

    @property
    def endpoint(self) -> str:
        """The base URL remote keys are appended to."""
        return self._endpoint

    def url_for(self, path: Path) -> str:
        """
        Return the URL of the remote object for path.
        Raises ValueError if path is not below the root.
        """
        relative = Path(path).relative_to(self._root_path)
        return self._endpoint + relative.as_posix()

    def put(self, path: Path) -> Put:
        """Upload the file at path, replacing the remote object."""
        url = ""
        try:
            url = self.url_for(path)
            with open(path, "rb") as f:
                response = self._session.put(url, data=f, timeout=self._timeout)
            response.raise_for_status()
            result = Put(success=True, path=path, url=url, status_code=response.status_code)
        except (OSError, ValueError) as e:
            self.handle_exception(e, url or path)
            result = Put(success=False, path=path, url=url, status_code=self._status_code(e), exception=e)
        return result

    def delete(self, path: Path) -> Delete:
        """Remove the remote object for path."""
        url = ""
        try:
            url = self.url_for(path)
            response = self._session.delete(url, timeout=self._timeout)
            response.raise_for_status()
            result = Delete(success=True, path=path, url=url, status_code=response.status_code)
        except (OSError, ValueError) as e:
            self.handle_exception(e, url or path)
            result = Delete(success=False, path=path, url=url, status_code=self._status_code(e), exception=e)
        return result

    def close(self) -> None:
        """Release pooled connections."""
        self._session.close()

    @staticmethod
    def _status_code(e: Exception) -> int | None:
        response = getattr(e, "response", None)
        return response.status_code if response is not None else None

    def handle_exception(self, e: Exception, target: str | Path) -> None:
        """
        Log a failed request by category. requests exceptions derive from
        OSError, so they are matched before the local file errors.
        """
        match e:
            case requests.HTTPError():
                logger.warning("remote store rejected %s: %s", target, e)
            case requests.Timeout():
                logger.warning("remote store timed out for %s: %s", target, e)
            case requests.ConnectionError():
                logger.warning("remote store unreachable for %s: (%s) %s", target, e.__class__.__name__, e)
            case requests.RequestException():
                logger.error("request for %s failed: (%s) %s", target, e.__class__.__name__, e)
            case FileNotFoundError() | IsADirectoryError():
                logger.info("%s is no longer a file, not uploaded", target)
            case ValueError():
                logger.error("%s is not below %s", target, self._root_path)
            case _:
                logger.error("unhandled exception for %s: (%s) %s", target, e.__class__.__name__, e)
                logger.error(traceback.format_exc())
