from typing import Optional


class ColdStorageError(Exception):
    """Base class for failures talking to the cold-storage API."""


class AuthFailure(ColdStorageError):
    """No credential strategy produced a bearer token."""

    def __init__(self, message: str, attempts: Optional[dict[str, str]] = None) -> None:
        self.attempts = attempts or {}
        super().__init__(message)


class RemoteError(ColdStorageError):
    """A remote call answered with a status we cannot use; keeps the body for diagnostics."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = "") -> None:
        self.status_code = status_code
        self.body = body
        detail = f"{message}: {status_code} {body}".strip() if status_code is not None else message
        super().__init__(detail)


class InitFailure(RemoteError):
    """The resumable session could not be started."""


class PermanentFailure(RemoteError):
    """Non-retryable 4xx (other than 429) or a malformed success response."""


class RetriesExhausted(RemoteError):
    """Transient failures persisted through every allowed attempt."""

    def __init__(self, message: str, attempts: int, status_code: Optional[int] = None, body: str = "") -> None:
        self.attempts = attempts
        super().__init__(message, status_code=status_code, body=body)
