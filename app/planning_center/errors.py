# app/planning_center/errors.py
from typing import Optional

RATE_LIMITED = "rate_limited"
NOT_FOUND = "not_found"
SERVER = "server"
CLIENT = "client"
NETWORK = "network"


class PCOError(Exception):
    """Upstream failure that survived (or skipped) the retry loop."""

    def __init__(self, message: str, *, kind: str, status_code: Optional[int] = None, path: str = ""):
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code
        self.path = path

    @property
    def retryable(self) -> bool:
        return self.kind != NOT_FOUND

    def __repr__(self) -> str:
        return f"PCOError(kind={self.kind!r}, status={self.status_code!r}, path={self.path!r})"


def kind_for_status(status_code: int) -> str:
    if status_code == 429:
        return RATE_LIMITED
    if status_code == 404:
        return NOT_FOUND
    if status_code >= 500:
        return SERVER
    return CLIENT
