"""Exception hierarchy shared by the pipeline, store and remote boundary."""

from __future__ import annotations


class BulkflowError(Exception):
    """Base class for bulkflow failures."""


class RemoteServiceError(BulkflowError):
    """Remote work service rejected or failed a call.

    ``code`` is the machine-readable error code returned by the remote API,
    or ``None`` when the failure never reached the API (transport errors).
    """

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.code = code

    def __str__(self) -> str:
        message = super().__str__()
        if self.code is None:
            return message
        return f"{message} (code={self.code})"


class ChecksumMismatchError(BulkflowError):
    """Downloaded content does not match the server-declared checksum."""

    def __init__(self, *, expected: str | None, actual: str) -> None:
        super().__init__(f"Checksum mismatch: declared={expected!r} computed={actual!r}")
        self.expected = expected
        self.actual = actual


class InvalidWorkRequestError(BulkflowError, ValueError):
    """A queue call supplied missing or inconsistent data; nothing was persisted."""


class CallbackResolutionError(BulkflowError, LookupError):
    """Stored callback descriptor cannot be resolved or decoded."""


class EntryStoreError(BulkflowError):
    """The persistence layer failed."""
