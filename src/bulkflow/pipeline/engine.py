"""Poll-driven state machine that moves work entries through the remote pipeline."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import col

from bulkflow.config import PipelineSettings, RetrySettings
from bulkflow.errors import (
    ChecksumMismatchError,
    EntryStoreError,
    InvalidWorkRequestError,
)
from bulkflow.pipeline.callbacks import CallbackDispatcher
from bulkflow.pipeline.cleanup import CleanupSweeper
from bulkflow.pipeline.failure_classifier import classify_remote_failure
from bulkflow.pipeline.integrity import compute_content_md5, verify_checksum
from bulkflow.pipeline.models import (
    MethodCallback,
    RemoteStatus,
    RemoteStatusReport,
    SubmitRequest,
    WorkEntryView,
    WorkRequest,
    WorkStage,
    stage_of,
)
from bulkflow.pipeline.profiles import PipelineProfile
from bulkflow.pipeline.remote import RemoteWorkService
from bulkflow.pipeline.repository import EntryRepository, release_lock, to_entry_view
from bulkflow.pipeline.retry_policy import is_stage_retry_due
from bulkflow.storage.common import to_db_datetime, utc_now
from bulkflow.storage.sqlmodel_models import WorkEntry

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class PollSummary:
    """Aggregate counters of one poll cycle."""

    swept: int = 0
    submitted: int = 0
    submit_retries: int = 0
    statuses_received: int = 0
    downloaded: int = 0
    download_retries: int = 0
    callbacks_dispatched: int = 0
    callback_retries: int = 0
    deleted_fatal: int = 0
    lock_conflicts: int = 0
    aborted: bool = False


class EntryQueueEngine:
    """One queue scoped to a pipeline kind, region and account.

    Each :meth:`poll` advances at most one entry through submit, download
    and callback, and polls statuses for every pending entry in one request.
    An entry takes at most one transition per cycle.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        repository: EntryRepository,
        remote: RemoteWorkService,
        profile: PipelineProfile,
        settings: PipelineSettings,
        region: str,
        account_id: str,
        dispatcher: CallbackDispatcher | None = None,
        instance_id: str = "default",
        restrict_callbacks_to_originating_instance: bool = False,
        lock_lease_seconds: int = 1_800,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.repository = repository
        self.remote = remote
        self.profile = profile
        self.settings = settings
        self.region = region
        self.account_id = account_id
        self.dispatcher = dispatcher or CallbackDispatcher()
        self.instance_id = instance_id
        self.restrict_callbacks_to_originating_instance = (
            restrict_callbacks_to_originating_instance
        )
        self._clock = clock
        self.sweeper = CleanupSweeper(
            repository=repository,
            settings=settings,
            kind=profile.kind,
            region=region,
            account_id=account_id,
            lock_lease_seconds=lock_lease_seconds,
            clock=clock,
        )
        self._touched: set[int] = set()

    @property
    def kind(self) -> str:
        return self.profile.kind

    def queue(
        self,
        request: WorkRequest,
        *,
        callback: MethodCallback | None = None,
    ) -> WorkEntryView:
        """Persist a new entry ready for submission."""

        self._validate_request(request, callback=callback)
        callback_payload_json = (
            self.dispatcher.registry.dump_payload(callback.payload) if callback else None
        )
        entry = WorkEntry(
            kind=self.kind,
            region=self.region,
            account_id=self.account_id,
            work_type=request.work_type.strip(),
            instance_id=self.instance_id,
            request_content=request.content,
            request_parameters_json=_dump_mapping(request.parameters),
            context_json=_dump_mapping(request.context),
            callback_key=callback.key if callback else None,
            callback_payload_json=callback_payload_json,
            created_at=to_db_datetime(self._clock()),
        )
        self.repository.create(entry)
        self.repository.save_changes()
        logger.info("Queued %s.", entry.identity_description)
        return to_entry_view(entry)

    def poll(self) -> PollSummary:
        """Run one full cycle; never raises for remote, callback or store errors."""

        summary = PollSummary()
        self._touched = set()
        logger.info(
            "Polling %s queue for region=%s account=%s.",
            self.kind,
            self.region,
            self.account_id,
        )
        try:
            summary.swept = self.sweeper.sweep().deleted_count
            self._submit_next(summary)
            self._poll_statuses(summary)
            self._download_next(summary)
            self._dispatch_next_callback(summary)
        except (EntryStoreError, SQLAlchemyError):
            summary.aborted = True
            logger.exception(
                "Store failure while polling %s queue; skipping the rest of this cycle.",
                self.kind,
            )
            self.repository.rollback()
        return summary

    def list_entries(self) -> list[WorkEntryView]:
        return [to_entry_view(entry) for entry in self._scope_entries()]

    def purge(self) -> int:
        """Delete every entry of this queue."""

        entries = self._scope_entries()
        self.repository.delete_many(entries)
        self.repository.save_changes()
        logger.warning("Purged %d %s entries.", len(entries), self.kind)
        return len(entries)

    def _submit_next(self, summary: PollSummary) -> None:
        now = self._clock()
        candidates = [
            entry
            for entry in self._unlocked_in_stage(WorkStage.READY_TO_SUBMIT)
            if self._is_due(
                self.settings.submission,
                entry=entry,
                retry_count=entry.submission_retry_count,
                now=now,
            )
        ]
        entry = self._lock_first(candidates, summary=summary)
        if entry is None:
            return

        logger.info("Submitting next %s entry in queue: %s.", self.kind, entry.identity_description)
        request = SubmitRequest(
            account_id=entry.account_id,
            region=entry.region,
            work_type=entry.work_type,
            content=entry.request_content,
            content_md5=compute_content_md5(entry.request_content),
            parameters=_load_mapping(entry.request_parameters_json),
        )
        try:
            request_id = self.remote.submit(request)
        except Exception as error:  # noqa: BLE001 - any remote client failure is retryable
            if self._handle_remote_failure(
                entry,
                error,
                counter="submission_retry_count",
                summary=summary,
            ):
                summary.submit_retries += 1
            return

        entry.last_attempt_at = to_db_datetime(self._clock())
        if request_id:
            entry.remote_request_id = request_id
            entry.submission_retry_count = 0
            summary.submitted += 1
            logger.info(
                "Submission succeeded for %s; awaiting remote processing.",
                entry.identity_description,
            )
        else:
            entry.submission_retry_count += 1
            summary.submit_retries += 1
            logger.warning(
                "Remote service returned no request id for %s. Retry count is now %d.",
                entry.identity_description,
                entry.submission_retry_count,
            )
        release_lock(entry)
        self.repository.update(entry)
        self.repository.save_changes()

    def _poll_statuses(self, summary: PollSummary) -> None:
        candidates = self._unlocked_in_stage(WorkStage.AWAITING_RESULT)
        locked = [entry for entry in candidates if self._try_lock(entry, summary=summary)]
        if not locked:
            return

        by_request_id = {entry.remote_request_id: entry for entry in locked}
        request_ids = [request_id for request_id in by_request_id if request_id is not None]
        logger.info("Requesting statuses for %d %s entries.", len(request_ids), self.kind)
        try:
            reports = self.remote.poll_statuses(request_ids)
        except Exception as error:  # noqa: BLE001 - any remote client failure is retryable
            logger.warning("Status request for %s queue failed: %s", self.kind, error)
            self._release_all(locked)
            return

        now = to_db_datetime(self._clock())
        for report in reports:
            entry = by_request_id.get(report.request_id)
            if entry is None:
                logger.debug("Ignoring status for unknown request id %r.", report.request_id)
                continue
            entry.last_attempt_at = now
            self._apply_status(entry, report)
            summary.statuses_received += 1
        self._release_all(locked)

    def _apply_status(self, entry: WorkEntry, report: RemoteStatusReport) -> None:
        status = RemoteStatus.parse(report.status)
        entry.last_remote_status = report.status
        if status == RemoteStatus.DONE:
            entry.remote_result_id = report.result_id or entry.remote_request_id
            entry.processing_retry_count = 0
            logger.info("Remote processing done for %s.", entry.identity_description)
        elif status == RemoteStatus.DONE_NO_DATA and self.profile.supports_no_data:
            entry.remote_result_id = report.result_id
            entry.content = b""
            entry.processing_retry_count = 0
            logger.info(
                "Remote processing done for %s with no data to download.",
                entry.identity_description,
            )
        elif status in self.profile.pending_statuses:
            entry.processing_retry_count = 0
        elif status == RemoteStatus.CANCELLED:
            entry.remote_request_id = None
            entry.remote_result_id = None
            entry.last_remote_status = None
            entry.processing_retry_count += 1
            logger.warning(
                "Remote side cancelled %s; queued for resubmission. Retry count is now %d.",
                entry.identity_description,
                entry.processing_retry_count,
            )
        else:
            entry.processing_retry_count += 1
            logger.warning(
                "Unexpected processing status %r for %s. Retry count is now %d.",
                report.status,
                entry.identity_description,
                entry.processing_retry_count,
            )

    def _download_next(self, summary: PollSummary) -> None:
        now = self._clock()
        candidates = [
            entry
            for entry in self._unlocked_in_stage(WorkStage.READY_TO_DOWNLOAD)
            if self._is_due(
                self.settings.download,
                entry=entry,
                retry_count=entry.download_retry_count,
                now=now,
            )
        ]
        entry = self._lock_first(candidates, summary=summary)
        if entry is None:
            return

        result_id = entry.remote_result_id or entry.remote_request_id or ""
        logger.info("Downloading result %r for %s.", result_id, entry.identity_description)
        try:
            result = self.remote.download(result_id)
        except Exception as error:  # noqa: BLE001 - any remote client failure is retryable
            if self._handle_remote_failure(
                entry,
                error,
                counter="download_retry_count",
                summary=summary,
            ):
                summary.download_retries += 1
            return

        entry.last_attempt_at = to_db_datetime(self._clock())
        try:
            verify_checksum(result.content, result.checksum)
        except ChecksumMismatchError as error:
            entry.download_retry_count += 1
            summary.download_retries += 1
            logger.warning(
                "%s for %s. Retry count is now %d. If this keeps happening, report "
                "the corrupted response body to the remote service provider.",
                error,
                entry.identity_description,
                entry.download_retry_count,
            )
        else:
            entry.content = result.content
            entry.download_retry_count = 0
            summary.downloaded += 1
            logger.info(
                "Downloaded and verified %d bytes for %s.",
                len(result.content),
                entry.identity_description,
            )
        release_lock(entry)
        self.repository.update(entry)
        self.repository.save_changes()

    def _dispatch_next_callback(self, summary: PollSummary) -> None:
        now = self._clock()
        extra: list[Any] = []
        if self.restrict_callbacks_to_originating_instance:
            extra.append(col(WorkEntry.instance_id) == self.instance_id)
        candidates = [
            entry
            for entry in self._unlocked_in_stage(WorkStage.READY_FOR_CALLBACK, *extra)
            if self._is_due(
                self.settings.callback,
                entry=entry,
                retry_count=entry.callback_retry_count,
                now=now,
            )
        ]
        entry = self._lock_first(candidates, summary=summary)
        if entry is None:
            return

        try:
            self.dispatcher.dispatch(entry)
        except Exception:  # noqa: BLE001 - host callbacks may raise anything
            entry.callback_retry_count += 1
            entry.last_attempt_at = to_db_datetime(self._clock())
            release_lock(entry)
            self.repository.update(entry)
            self.repository.save_changes()
            summary.callback_retries += 1
            logger.exception(
                "Callback failed for %s. Retry count is now %d.",
                entry.identity_description,
                entry.callback_retry_count,
            )
            return

        description = entry.identity_description
        self.repository.delete(entry)
        self.repository.save_changes()
        summary.callbacks_dispatched += 1
        logger.info("Result delivered and entry removed: %s.", description)

    def _handle_remote_failure(
        self,
        entry: WorkEntry,
        error: Exception,
        *,
        counter: str,
        summary: PollSummary,
    ) -> bool:
        """Delete the entry on a fatal error, else count a retry; True when retried."""

        classification = classify_remote_failure(
            error,
            kind=self.kind,
            fatal_error_codes=self.profile.fatal_error_codes,
        )
        if classification.is_fatal:
            logger.warning(
                "Fatal remote error for %s: %s. Entry deleted without retry. %s",
                entry.identity_description,
                error,
                classification.to_log_details(kind=self.kind),
            )
            self.repository.delete(entry)
            self.repository.save_changes()
            summary.deleted_fatal += 1
            return False

        setattr(entry, counter, getattr(entry, counter) + 1)
        entry.last_attempt_at = to_db_datetime(self._clock())
        release_lock(entry)
        self.repository.update(entry)
        self.repository.save_changes()
        logger.warning(
            "Retryable remote error for %s: %s. %s is now %d.",
            entry.identity_description,
            error,
            counter,
            getattr(entry, counter),
        )
        return True

    def _scope_clauses(self) -> list[Any]:
        return [
            col(WorkEntry.kind) == self.kind,
            col(WorkEntry.region) == self.region,
            col(WorkEntry.account_id) == self.account_id,
        ]

    def _scope_entries(self) -> list[WorkEntry]:
        return self.repository.get_all(
            kind=self.kind,
            region=self.region,
            account_id=self.account_id,
        )

    def _unlocked_in_stage(self, stage: WorkStage, *clauses: Any) -> list[WorkEntry]:
        entries = self.repository.where(
            *self._scope_clauses(),
            col(WorkEntry.is_locked).is_(False),
            *clauses,
        )
        return [
            entry
            for entry in entries
            if entry.id not in self._touched and stage_of(entry) == stage
        ]

    def _is_due(
        self,
        settings: RetrySettings,
        *,
        entry: WorkEntry,
        retry_count: int,
        now: datetime,
    ) -> bool:
        return is_stage_retry_due(
            settings,
            last_attempt=entry.last_attempt_at,
            retry_count=retry_count,
            now=now,
        )

    def _lock_first(self, candidates: list[WorkEntry], *, summary: PollSummary) -> WorkEntry | None:
        for entry in candidates:
            if self._try_lock(entry, summary=summary):
                return entry
        return None

    def _try_lock(self, entry: WorkEntry, *, summary: PollSummary) -> bool:
        if not self.repository.try_lock(entry, now=self._clock()):
            summary.lock_conflicts += 1
            return False
        if entry.id is not None:
            self._touched.add(entry.id)
        return True

    def _release_all(self, entries: list[WorkEntry]) -> None:
        for entry in entries:
            release_lock(entry)
            self.repository.update(entry)
        self.repository.save_changes()

    def _validate_request(self, request: WorkRequest, *, callback: MethodCallback | None) -> None:
        missing = "Cannot queue work due to missing information"
        if request.content is None:
            raise InvalidWorkRequestError(f"{missing}: content is required.")
        if not isinstance(request.work_type, str) or not request.work_type.strip():
            raise InvalidWorkRequestError(f"{missing}: work type is required.")
        if callback is None:
            return
        if callback.payload is None:
            raise InvalidWorkRequestError(f"{missing}: method callback payload is required.")
        if callback.key not in self.dispatcher.registry:
            raise InvalidWorkRequestError(
                f"No callback registered under key {callback.key!r}; register it before queuing.",
            )


def _dump_mapping(value: dict[str, Any]) -> str | None:
    if not value:
        return None
    try:
        return json.dumps(value, ensure_ascii=False, sort_keys=True)
    except (TypeError, ValueError) as error:
        raise InvalidWorkRequestError(
            f"Work request data is not JSON serializable: {error}",
        ) from error


def _load_mapping(raw: str | None) -> dict[str, Any]:
    if not raw:
        return {}
    parsed = json.loads(raw)
    return parsed if isinstance(parsed, dict) else {}
