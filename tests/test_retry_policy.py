from __future__ import annotations

from datetime import UTC, datetime, timedelta

import allure
import pytest

from bulkflow.config import RetryProgression, RetrySettings
from bulkflow.pipeline.retry_policy import compute_retry_wait, is_retry_due, is_stage_retry_due

pytestmark = [
    allure.epic("Entry Pipeline"),
    allure.feature("Retry Policy"),
]

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


@pytest.mark.parametrize(
    ("progression", "retry_count", "expected_seconds"),
    [
        (RetryProgression.ARITHMETIC, 1, 60 + 300),
        (RetryProgression.ARITHMETIC, 3, 60 + 900),
        (RetryProgression.GEOMETRIC, 1, 60 + 300),
        (RetryProgression.GEOMETRIC, 3, 60 + 1200),
    ],
)
def test_compute_retry_wait_follows_progression(
    progression: RetryProgression,
    retry_count: int,
    expected_seconds: int,
) -> None:
    wait = compute_retry_wait(
        retry_count=retry_count,
        initial_delay_seconds=60,
        interval_seconds=300,
        progression=progression,
    )
    assert wait == timedelta(seconds=expected_seconds)


def test_compute_retry_wait_rejects_negative_count() -> None:
    with pytest.raises(ValueError, match="retry_count"):
        compute_retry_wait(
            retry_count=-1,
            initial_delay_seconds=0,
            interval_seconds=0,
            progression=RetryProgression.ARITHMETIC,
        )


def test_first_attempt_is_always_due() -> None:
    assert is_retry_due(
        last_attempt=NOW,
        retry_count=0,
        initial_delay_seconds=3600,
        interval_seconds=3600,
        progression=RetryProgression.GEOMETRIC,
        now=NOW,
    )


def test_retry_without_recorded_attempt_is_due() -> None:
    assert is_retry_due(
        last_attempt=None,
        retry_count=2,
        initial_delay_seconds=3600,
        interval_seconds=3600,
        progression=RetryProgression.GEOMETRIC,
        now=NOW,
    )


def test_arithmetic_retry_due_exactly_at_boundary() -> None:
    last_attempt = NOW - timedelta(minutes=40)
    kwargs = {
        "last_attempt": last_attempt,
        "initial_delay_seconds": 600,
        "interval_seconds": 600,
        "progression": RetryProgression.ARITHMETIC,
    }

    assert not is_retry_due(retry_count=3, now=NOW - timedelta(seconds=1), **kwargs)
    assert is_retry_due(retry_count=3, now=NOW, **kwargs)


def test_geometric_retry_waits_longer_than_arithmetic() -> None:
    last_attempt = NOW - timedelta(minutes=30)

    assert is_retry_due(
        last_attempt=last_attempt,
        retry_count=3,
        initial_delay_seconds=0,
        interval_seconds=600,
        progression=RetryProgression.ARITHMETIC,
        now=NOW,
    )
    assert not is_retry_due(
        last_attempt=last_attempt,
        retry_count=3,
        initial_delay_seconds=0,
        interval_seconds=600,
        progression=RetryProgression.GEOMETRIC,
        now=NOW,
    )


def test_naive_last_attempt_is_treated_as_utc() -> None:
    naive_last_attempt = datetime(2026, 3, 1, 11, 0)

    assert is_stage_retry_due(
        RetrySettings(
            initial_delay_seconds=0,
            interval_seconds=3600,
            progression=RetryProgression.ARITHMETIC,
        ),
        last_attempt=naive_last_attempt,
        retry_count=1,
        now=NOW,
    )


@pytest.mark.parametrize("progression", list(RetryProgression))
def test_retry_waits_never_shrink_as_retries_accumulate(progression: RetryProgression) -> None:
    waits = [
        compute_retry_wait(
            retry_count=retry_count,
            initial_delay_seconds=30,
            interval_seconds=120,
            progression=progression,
        )
        for retry_count in range(21)
    ]

    assert waits[0] == timedelta(0)
    assert all(earlier <= later for earlier, later in zip(waits, waits[1:]))
    assert waits[20] > waits[1]
