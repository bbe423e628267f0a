from __future__ import annotations

import allure

from bulkflow.errors import RemoteServiceError
from bulkflow.pipeline.failure_classifier import (
    REMOTE_FAILURE_CLASSIFIER_VERSION,
    classify_remote_failure,
)
from bulkflow.pipeline.models import FailureClass
from bulkflow.pipeline.profiles import REPORT_PROFILE, SUBMISSION_PROFILE

pytestmark = [
    allure.epic("Entry Pipeline"),
    allure.feature("Remote Failure Classification"),
]


def test_classifier_version_is_stable() -> None:
    assert REMOTE_FAILURE_CLASSIFIER_VERSION == 1


def test_fatal_code_of_report_profile() -> None:
    classified = classify_remote_failure(
        RemoteServiceError("denied", code="AccessToReportDenied"),
        kind=REPORT_PROFILE.kind,
        fatal_error_codes=REPORT_PROFILE.fatal_error_codes,
    )
    assert classified.failure_class == FailureClass.FATAL
    assert classified.is_fatal
    assert classified.matched_rule == "fatal_code"
    assert classified.reason_code == "report_fatal_remote_code"
    assert classified.error_code == "AccessToReportDenied"


def test_fatal_codes_are_profile_specific() -> None:
    classified = classify_remote_failure(
        RemoteServiceError("denied", code="AccessToReportDenied"),
        kind=SUBMISSION_PROFILE.kind,
        fatal_error_codes=SUBMISSION_PROFILE.fatal_error_codes,
    )
    assert classified.failure_class == FailureClass.TRANSIENT
    assert classified.matched_rule == "non_fatal_code"


def test_unrecognized_code_is_transient() -> None:
    classified = classify_remote_failure(
        RemoteServiceError("slow down", code="RequestThrottled"),
        kind="report",
        fatal_error_codes=REPORT_PROFILE.fatal_error_codes,
    )
    assert classified.failure_class == FailureClass.TRANSIENT
    assert classified.reason_code == "report_remote_transient"
    assert classified.error_code == "RequestThrottled"


def test_missing_code_is_transient() -> None:
    classified = classify_remote_failure(
        RemoteServiceError("boom"),
        kind="submission",
        fatal_error_codes=SUBMISSION_PROFILE.fatal_error_codes,
    )
    assert classified.failure_class == FailureClass.TRANSIENT
    assert classified.matched_rule == "missing_code"


def test_transport_error_is_transient() -> None:
    classified = classify_remote_failure(
        ConnectionResetError("peer reset"),
        kind="report",
        fatal_error_codes=REPORT_PROFILE.fatal_error_codes,
    )
    assert classified.failure_class == FailureClass.TRANSIENT
    assert classified.matched_rule == "transport_error"
    assert classified.to_log_details(kind="report") == {
        "classifier_version": 1,
        "kind": "report",
        "reason_code": "report_transport_transient",
        "matched_rule": "transport_error",
        "error_code": None,
    }


def test_remote_error_string_includes_code() -> None:
    assert str(RemoteServiceError("denied", code="FeedCanceled")) == "denied (code=FeedCanceled)"
    assert str(RemoteServiceError("denied")) == "denied"


def test_unexpected_client_exception_is_transient() -> None:
    classified = classify_remote_failure(
        ValueError("malformed response"),
        kind="submission",
        fatal_error_codes=SUBMISSION_PROFILE.fatal_error_codes,
    )
    assert classified.failure_class == FailureClass.TRANSIENT
    assert classified.matched_rule == "client_error"
    assert classified.reason_code == "submission_client_transient"
    assert classified.error_code is None
