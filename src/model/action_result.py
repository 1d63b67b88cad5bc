"""
model.action_result. Classes representing success or failure of a call to the
remote store
"""
from pathlib import Path
from dataclasses import dataclass

@dataclass
class ActionResult:
    """
    Base class representing the result of one request against the remote store.

    Attributes:
        success: Whether the request completed with a non-error status.
        path: The local path the request was made for.
        url: The target URL, empty if it could not be computed.
        status_code: The HTTP status received, None if no response arrived.
        exception: The exception raised if the request failed.
    """
    success: bool
    path: Path
    url: str = ""
    status_code: int | None = None
    exception: Exception | None = None

    def __str__(self):
        status = f" ({self.status_code})" if self.status_code is not None else ""
        return f"{self.__class__.__name__.lower()}{'' if self.success else ' failed'} {self.url or self.path}{status}"

class Put(ActionResult):
    """
    Represents the result of uploading a local file with PUT.
    """

class Delete(ActionResult):
    """
    Represents the result of removing a remote object with DELETE.
    """
