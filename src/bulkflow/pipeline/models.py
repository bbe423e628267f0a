"""Domain models for the work entry pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, BinaryIO

from bulkflow.storage.sqlmodel_models import WorkEntry


class WorkStage(str, Enum):
    """Lifecycle stage derived from an entry's fields."""

    READY_TO_SUBMIT = "ready_to_submit"
    AWAITING_RESULT = "awaiting_result"
    READY_TO_DOWNLOAD = "ready_to_download"
    READY_FOR_CALLBACK = "ready_for_callback"


class RemoteStatus(str, Enum):
    """Processing statuses reported by the remote service."""

    DONE = "_DONE_"
    DONE_NO_DATA = "_DONE_NO_DATA_"
    AWAITING_ASYNC_REPLY = "_AWAITING_ASYNCHRONOUS_REPLY_"
    IN_PROGRESS = "_IN_PROGRESS_"
    IN_SAFETY_NET = "_IN_SAFETY_NET_"
    SUBMITTED = "_SUBMITTED_"
    UNCONFIRMED = "_UNCONFIRMED_"
    CANCELLED = "_CANCELLED_"
    UNKNOWN = "_UNKNOWN_"

    @classmethod
    def parse(cls, value: str | None) -> RemoteStatus:
        if value is None:
            return cls.UNKNOWN
        try:
            return cls(value.strip().upper())
        except ValueError:
            return cls.UNKNOWN


class FailureClass(str, Enum):
    """Normalized remote failure classes used by the retry policy."""

    FATAL = "fatal"
    TRANSIENT = "transient"


def stage_of(entry: WorkEntry) -> WorkStage:
    """Derive the single lifecycle stage implied by an entry's fields."""

    if entry.content is not None:
        return WorkStage.READY_FOR_CALLBACK
    if entry.remote_request_id is None:
        return WorkStage.READY_TO_SUBMIT
    if RemoteStatus.parse(entry.last_remote_status) == RemoteStatus.DONE:
        return WorkStage.READY_TO_DOWNLOAD
    return WorkStage.AWAITING_RESULT


@dataclass(slots=True)
class MethodCallback:
    """Deliver the result to a handler registered under ``key``."""

    key: str
    payload: Any


@dataclass(slots=True)
class WorkRequest:
    """Input payload for queuing a unit of remote work."""

    work_type: str
    content: bytes | None
    parameters: dict[str, Any] = field(default_factory=dict)
    context: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class SubmitRequest:
    """Everything the remote service needs to accept one unit of work."""

    account_id: str
    region: str
    work_type: str
    content: bytes
    content_md5: str
    parameters: dict[str, Any]


@dataclass(slots=True)
class RemoteStatusReport:
    """One ``(request id, status)`` pair from a status poll."""

    request_id: str
    status: str
    result_id: str | None = None


@dataclass(slots=True)
class DownloadResult:
    """Downloaded result body with the checksum the server declared for it."""

    content: bytes
    checksum: str | None


@dataclass(slots=True)
class ResultReadyEvent:
    """Published for entries queued without a method callback."""

    content: BinaryIO
    region: str
    account_id: str
    result_id: str | None
    work_type: str
    context: dict[str, Any]


@dataclass(slots=True)
class WorkEntryView:
    """Readable snapshot of one entry for callers and the CLI."""

    entry_id: int
    kind: str
    region: str
    account_id: str
    work_type: str
    stage: WorkStage
    remote_request_id: str | None
    remote_result_id: str | None
    last_remote_status: str | None
    submission_retry_count: int
    processing_retry_count: int
    download_retry_count: int
    callback_retry_count: int
    is_locked: bool
    has_method_callback: bool
    instance_id: str | None
    last_attempt_at: datetime | None
    created_at: datetime
