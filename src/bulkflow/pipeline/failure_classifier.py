"""Deterministic remote failure classification for the pipeline retry policy."""

from __future__ import annotations

from dataclasses import dataclass

from bulkflow.errors import RemoteServiceError
from bulkflow.pipeline.models import FailureClass

REMOTE_FAILURE_CLASSIFIER_VERSION = 1


@dataclass(slots=True)
class RemoteFailureClassification:
    """Normalized failure classification result."""

    failure_class: FailureClass
    reason_code: str
    matched_rule: str
    error_code: str | None

    @property
    def is_fatal(self) -> bool:
        return self.failure_class == FailureClass.FATAL

    def to_log_details(self, *, kind: str) -> dict[str, object]:
        """Serialize classifier diagnostics for log records."""

        return {
            "classifier_version": REMOTE_FAILURE_CLASSIFIER_VERSION,
            "kind": kind,
            "reason_code": self.reason_code,
            "matched_rule": self.matched_rule,
            "error_code": self.error_code,
        }


def classify_remote_failure(
    error: Exception,
    *,
    kind: str,
    fatal_error_codes: frozenset[str],
) -> RemoteFailureClassification:
    """Classify a failed remote call into fatal or retryable."""

    if isinstance(error, OSError):
        return RemoteFailureClassification(
            failure_class=FailureClass.TRANSIENT,
            reason_code=f"{kind}_transport_transient",
            matched_rule="transport_error",
            error_code=None,
        )
    if not isinstance(error, RemoteServiceError):
        return RemoteFailureClassification(
            failure_class=FailureClass.TRANSIENT,
            reason_code=f"{kind}_client_transient",
            matched_rule="client_error",
            error_code=None,
        )

    code = error.code.strip() if error.code else None
    if code is not None and code in fatal_error_codes:
        return RemoteFailureClassification(
            failure_class=FailureClass.FATAL,
            reason_code=f"{kind}_fatal_remote_code",
            matched_rule="fatal_code",
            error_code=code,
        )

    # Unrecognized codes stay retryable so work is never dropped silently.
    return RemoteFailureClassification(
        failure_class=FailureClass.TRANSIENT,
        reason_code=f"{kind}_remote_transient",
        matched_rule="non_fatal_code" if code is not None else "missing_code",
        error_code=code,
    )
