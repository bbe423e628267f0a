"""Pure retry timing decisions for pipeline stages."""

from __future__ import annotations

from datetime import datetime, timedelta

from bulkflow.config import RetryProgression, RetrySettings
from bulkflow.storage.common import to_utc_aware_datetime


def compute_retry_wait(
    *,
    retry_count: int,
    initial_delay_seconds: float,
    interval_seconds: float,
    progression: RetryProgression,
) -> timedelta:
    """Wait required after the last attempt before attempt ``retry_count + 1``."""

    if retry_count < 0:
        raise ValueError(f"retry_count must be >= 0, got {retry_count}")
    if retry_count == 0:
        return timedelta(0)
    if progression == RetryProgression.GEOMETRIC:
        multiplier = 2 ** (retry_count - 1)
    else:
        multiplier = retry_count
    return timedelta(seconds=initial_delay_seconds + interval_seconds * multiplier)


def is_retry_due(  # noqa: PLR0913
    *,
    last_attempt: datetime | None,
    retry_count: int,
    initial_delay_seconds: float,
    interval_seconds: float,
    progression: RetryProgression,
    now: datetime,
) -> bool:
    """Return whether the next attempt of a stage may run at ``now``."""

    if retry_count == 0 or last_attempt is None:
        return True
    wait = compute_retry_wait(
        retry_count=retry_count,
        initial_delay_seconds=initial_delay_seconds,
        interval_seconds=interval_seconds,
        progression=progression,
    )
    elapsed = to_utc_aware_datetime(now) - to_utc_aware_datetime(last_attempt)
    return elapsed >= wait


def is_stage_retry_due(
    settings: RetrySettings,
    *,
    last_attempt: datetime | None,
    retry_count: int,
    now: datetime,
) -> bool:
    """Shortcut for :func:`is_retry_due` with timing taken from stage settings."""

    return is_retry_due(
        last_attempt=last_attempt,
        retry_count=retry_count,
        initial_delay_seconds=settings.initial_delay_seconds,
        interval_seconds=settings.interval_seconds,
        progression=settings.progression,
        now=now,
    )
