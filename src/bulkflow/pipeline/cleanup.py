"""Removal of entries that exhausted their retries or outlived the expiration window."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from bulkflow.config import PipelineSettings
from bulkflow.pipeline.repository import EntryRepository
from bulkflow.storage.common import to_utc_aware_datetime, utc_now
from bulkflow.storage.sqlmodel_models import WorkEntry

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SweepResult:
    """Entries removed by one sweep, with the reasons each one qualified."""

    deleted: dict[int, tuple[str, ...]] = field(default_factory=dict)
    released_locks: int = 0

    @property
    def deleted_count(self) -> int:
        return len(self.deleted)


def expiry_reasons(
    entry: WorkEntry,
    *,
    settings: PipelineSettings,
    now: datetime,
) -> tuple[str, ...]:
    """Every deletion criterion the entry meets; empty when it should stay."""

    reasons: list[str] = []
    if (
        entry.remote_request_id is None
        and entry.submission_retry_count > settings.submission.max_retry_count
    ):
        reasons.append("submission_retries_exhausted")
    if entry.download_retry_count > settings.download.max_retry_count:
        reasons.append("download_retries_exhausted")
    if entry.callback_retry_count > settings.callback.max_retry_count:
        reasons.append("callback_retries_exhausted")
    if entry.processing_retry_count > settings.processing.max_retry_count:
        reasons.append("processing_retries_exhausted")
    age = to_utc_aware_datetime(now) - to_utc_aware_datetime(entry.created_at)
    if age > timedelta(seconds=settings.expiration_seconds):
        reasons.append("expired")
    return tuple(reasons)


class CleanupSweeper:
    """Full-scope pass deleting entries that can no longer make progress."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        repository: EntryRepository,
        settings: PipelineSettings,
        kind: str,
        region: str,
        account_id: str,
        lock_lease_seconds: int = 1_800,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.repository = repository
        self.settings = settings
        self.kind = kind
        self.region = region
        self.account_id = account_id
        self.lock_lease_seconds = lock_lease_seconds
        self._clock = clock

    def sweep(self) -> SweepResult:
        """Delete every qualifying entry and commit once, also when nothing changed."""

        now = self._clock()
        result = SweepResult()
        doomed: list[WorkEntry] = []
        for entry in self.repository.get_all(
            kind=self.kind,
            region=self.region,
            account_id=self.account_id,
        ):
            reasons = expiry_reasons(entry, settings=self.settings, now=now)
            if reasons and entry.id is not None:
                result.deleted[entry.id] = reasons
                doomed.append(entry)

        result.released_locks = self.repository.release_expired_locks(
            kind=self.kind,
            region=self.region,
            account_id=self.account_id,
            locked_before=now - timedelta(seconds=self.lock_lease_seconds),
        )

        if doomed:
            logger.warning(
                "The following %s entries exceeded their retry limits or expired "
                "and will now be deleted:",
                self.kind,
            )
            for entry in doomed:
                logger.warning(
                    "Deleting %s: %s",
                    entry.identity_description,
                    ", ".join(result.deleted[entry.id or 0]),
                )
            self.repository.delete_many(doomed)
        if result.released_locks:
            logger.warning(
                "Released %d %s entry lock(s) older than %ds.",
                result.released_locks,
                self.kind,
                self.lock_lease_seconds,
            )
        # The lock release UPDATE opens a write transaction even when it matches nothing.
        self.repository.save_changes()
        return result
