from __future__ import annotations

from typing import Any


class HearthError(RuntimeError):
    pass


class SessionStoreError(HearthError):
    """
    Storage failure inside the session store (connectivity, query, key collision).
    Never means "no session": callers get None for that.
    """


class HttpError(HearthError):
    def __init__(self, status: int, code: str, message: str = "", details: dict[str, Any] | None = None) -> None:
        super().__init__(message or code)
        self.status = status
        self.code = code
        self.message = message
        self.details = details

    def to_payload(self) -> dict[str, Any]:
        err: dict[str, Any] = {"code": self.code}
        if self.message:
            err["message"] = self.message
        if self.details:
            err.update(self.details)
        return {"error": err}
