"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

import pytest

from bulkflow.config import PipelineSettings
from bulkflow.pipeline.callbacks import CallbackDispatcher, CallbackRegistry
from bulkflow.pipeline.engine import EntryQueueEngine
from bulkflow.pipeline.integrity import compute_content_md5
from bulkflow.pipeline.models import DownloadResult, RemoteStatusReport, SubmitRequest
from bulkflow.pipeline.profiles import REPORT_PROFILE, PipelineProfile
from bulkflow.pipeline.repository import EntryRepository

REGION = "europe"
ACCOUNT_ID = "A1"


class MutableClock:
    """Injectable clock the tests move forward explicitly."""

    def __init__(self, now: datetime | None = None) -> None:
        self.now = now or datetime(2026, 3, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


@dataclass
class FakeRemoteService:
    """Scripted remote service recording every call.

    ``submit_outcomes`` is consumed front to back; an exception instance is
    raised instead of returned. Without scripted outcomes submissions get
    sequential request ids.
    """

    submit_outcomes: list[object] = field(default_factory=list)
    statuses: dict[str, tuple[str, str | None]] = field(default_factory=dict)
    status_error: Exception | None = None
    downloads: dict[str, object] = field(default_factory=dict)
    submitted: list[SubmitRequest] = field(default_factory=list)
    status_requests: list[list[str]] = field(default_factory=list)
    downloaded: list[str] = field(default_factory=list)

    def submit(self, request: SubmitRequest) -> str | None:
        self.submitted.append(request)
        if self.submit_outcomes:
            outcome = self.submit_outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome  # type: ignore[return-value]
        return f"REQ-{len(self.submitted)}"

    def poll_statuses(self, request_ids: Sequence[str]) -> list[RemoteStatusReport]:
        self.status_requests.append(list(request_ids))
        if self.status_error is not None:
            raise self.status_error
        return [
            RemoteStatusReport(request_id=request_id, status=status, result_id=result_id)
            for request_id in request_ids
            if request_id in self.statuses
            for status, result_id in [self.statuses[request_id]]
        ]

    def download(self, result_id: str) -> DownloadResult:
        self.downloaded.append(result_id)
        outcome = self.downloads[result_id]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome  # type: ignore[return-value]

    def serve(self, result_id: str, content: bytes, *, checksum: str | None = None) -> None:
        self.downloads[result_id] = DownloadResult(
            content=content,
            checksum=compute_content_md5(content) if checksum is None else checksum,
        )


@pytest.fixture()
def clock() -> MutableClock:
    return MutableClock()


@pytest.fixture()
def remote() -> FakeRemoteService:
    return FakeRemoteService()


@pytest.fixture()
def fake_remote_factory() -> type[FakeRemoteService]:
    return FakeRemoteService


@pytest.fixture()
def repository(tmp_path):
    repo = EntryRepository(tmp_path / "bulkflow.db")
    repo.init_schema()
    yield repo
    repo.close()


@pytest.fixture()
def registry() -> CallbackRegistry:
    return CallbackRegistry()


@pytest.fixture()
def make_engine(repository, remote, clock, registry):
    """Factory for engines sharing the test store, remote fake and clock."""

    def _make(  # noqa: PLR0913
        *,
        profile: PipelineProfile = REPORT_PROFILE,
        settings: PipelineSettings | None = None,
        repo: EntryRepository | None = None,
        instance_id: str = "default",
        restrict_callbacks_to_originating_instance: bool = False,
        account_id: str = ACCOUNT_ID,
    ) -> EntryQueueEngine:
        return EntryQueueEngine(
            repository=repo or repository,
            remote=remote,
            profile=profile,
            settings=settings or PipelineSettings(),
            region=REGION,
            account_id=account_id,
            dispatcher=CallbackDispatcher(registry),
            instance_id=instance_id,
            restrict_callbacks_to_originating_instance=restrict_callbacks_to_originating_instance,
            clock=clock,
        )

    return _make
