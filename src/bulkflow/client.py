"""Host-facing facade bundling the report and submission queues of one account."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from bulkflow.config import Settings
from bulkflow.pipeline.callbacks import CallbackDispatcher, CallbackRegistry, EventHandler
from bulkflow.pipeline.engine import EntryQueueEngine, PollSummary
from bulkflow.pipeline.models import MethodCallback, WorkEntryView, WorkRequest
from bulkflow.pipeline.profiles import REPORT_PROFILE, SUBMISSION_PROFILE, PipelineProfile
from bulkflow.pipeline.remote import RemoteWorkService
from bulkflow.pipeline.repository import EntryRepository
from bulkflow.storage.common import utc_now

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ClientPollSummary:
    """Results of one :meth:`BulkflowClient.poll` across both pipelines."""

    reports: PollSummary
    submissions: PollSummary


class BulkflowClient:
    """Queue remote work and drive it to completion with periodic :meth:`poll` calls.

    Report and submission pipelines share one store and one callback
    registry but keep separate event subscribers.
    """

    def __init__(  # noqa: PLR0913
        self,
        settings: Settings,
        *,
        report_service: RemoteWorkService,
        submission_service: RemoteWorkService,
        repository: EntryRepository | None = None,
        registry: CallbackRegistry | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        settings.validate()
        self.settings = settings
        self.repository = repository or EntryRepository(
            settings.db_path,
            sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
        )
        self.registry = registry or CallbackRegistry()
        self.reports = self._build_engine(
            REPORT_PROFILE,
            remote=report_service,
            clock=clock,
        )
        self.submissions = self._build_engine(
            SUBMISSION_PROFILE,
            remote=submission_service,
            clock=clock,
        )

    def init_schema(self) -> None:
        self.repository.init_schema()

    def close(self) -> None:
        self.repository.close()

    def queue_report(
        self,
        request: WorkRequest,
        *,
        callback: MethodCallback | None = None,
    ) -> WorkEntryView:
        return self.reports.queue(request, callback=callback)

    def queue_submission(
        self,
        request: WorkRequest,
        *,
        callback: MethodCallback | None = None,
    ) -> WorkEntryView:
        return self.submissions.queue(request, callback=callback)

    def on_report_ready(self, handler: EventHandler) -> None:
        """Receive reports queued without a method callback."""

        self.reports.dispatcher.subscribe(handler)

    def on_submission_result_ready(self, handler: EventHandler) -> None:
        """Receive submission results queued without a method callback."""

        self.submissions.dispatcher.subscribe(handler)

    def poll(self) -> ClientPollSummary:
        """Advance both pipelines by one cycle."""

        summary = ClientPollSummary(
            reports=self.reports.poll(),
            submissions=self.submissions.poll(),
        )
        logger.info(
            "Poll finished: reports=%s submissions=%s",
            summary.reports,
            summary.submissions,
        )
        return summary

    def _build_engine(
        self,
        profile: PipelineProfile,
        *,
        remote: RemoteWorkService,
        clock: Callable[[], datetime],
    ) -> EntryQueueEngine:
        return EntryQueueEngine(
            repository=self.repository,
            remote=remote,
            profile=profile,
            settings=getattr(self.settings, profile.kind),
            region=self.settings.region,
            account_id=self.settings.account_id,
            dispatcher=CallbackDispatcher(self.registry),
            instance_id=self.settings.instance_id,
            restrict_callbacks_to_originating_instance=(
                self.settings.restrict_callbacks_to_originating_instance
            ),
            lock_lease_seconds=self.settings.lock_lease_seconds,
            clock=clock,
        )
