"""Per-kind vocabularies that parameterize the generic pipeline engine."""

from __future__ import annotations

from dataclasses import dataclass

from bulkflow.pipeline.models import RemoteStatus

PENDING_STATUSES: frozenset[RemoteStatus] = frozenset(
    {
        RemoteStatus.AWAITING_ASYNC_REPLY,
        RemoteStatus.IN_PROGRESS,
        RemoteStatus.IN_SAFETY_NET,
        RemoteStatus.SUBMITTED,
        RemoteStatus.UNCONFIRMED,
    },
)


@dataclass(frozen=True, slots=True)
class PipelineProfile:
    """Kind name, status vocabulary and fatal error codes of one pipeline."""

    kind: str
    fatal_error_codes: frozenset[str]
    pending_statuses: frozenset[RemoteStatus] = PENDING_STATUSES
    supports_no_data: bool = False


REPORT_PROFILE = PipelineProfile(
    kind="report",
    fatal_error_codes=frozenset(
        {
            "AccessToReportDenied",
            "ReportCanceled",
            "ReportNoLongerAvailable",
            "InputDataError",
            "InvalidReportType",
            "InvalidRequest",
        },
    ),
    supports_no_data=True,
)

SUBMISSION_PROFILE = PipelineProfile(
    kind="submission",
    fatal_error_codes=frozenset(
        {
            "AccessToFeedProcessingResultDenied",
            "FeedCanceled",
            "FeedProcessingResultNoLongerAvailable",
            "InputDataError",
            "InvalidFeedType",
            "InvalidRequest",
        },
    ),
)

PROFILES: dict[str, PipelineProfile] = {
    REPORT_PROFILE.kind: REPORT_PROFILE,
    SUBMISSION_PROFILE.kind: SUBMISSION_PROFILE,
}
