"""Runtime configuration for the work entry pipelines."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


class RetryProgression(str, Enum):
    """How the wait between retries grows with the retry count."""

    ARITHMETIC = "arithmetic"
    GEOMETRIC = "geometric"


@dataclass(slots=True)
class RetrySettings:
    """Retry budget and timing for one pipeline stage."""

    max_retry_count: int = 3
    initial_delay_seconds: float = 60.0
    interval_seconds: float = 300.0
    progression: RetryProgression = RetryProgression.GEOMETRIC


@dataclass(slots=True)
class PipelineSettings:
    """Per-pipeline stage policies and entry expiration.

    Only ``processing.max_retry_count`` is enforced for the processing stage.
    Every unlocked entry awaiting a result joins each cycle's status request,
    so its delay and interval settings never postpone a poll.
    """

    submission: RetrySettings = field(
        default_factory=lambda: RetrySettings(
            max_retry_count=4,
            initial_delay_seconds=30.0,
            interval_seconds=120.0,
        ),
    )
    processing: RetrySettings = field(
        default_factory=lambda: RetrySettings(
            max_retry_count=3,
            initial_delay_seconds=0.0,
            interval_seconds=600.0,
            progression=RetryProgression.ARITHMETIC,
        ),
    )
    download: RetrySettings = field(
        default_factory=lambda: RetrySettings(
            max_retry_count=3,
            initial_delay_seconds=60.0,
            interval_seconds=300.0,
            progression=RetryProgression.ARITHMETIC,
        ),
    )
    callback: RetrySettings = field(
        default_factory=lambda: RetrySettings(
            max_retry_count=4,
            initial_delay_seconds=30.0,
            interval_seconds=60.0,
            progression=RetryProgression.ARITHMETIC,
        ),
    )
    expiration_seconds: int = 2 * 24 * 3600


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(".bulkflow.db")
    sqlite_busy_timeout_ms: int = 5_000
    region: str = "europe"
    account_id: str = ""
    instance_id: str = "default"
    restrict_callbacks_to_originating_instance: bool = False
    lock_lease_seconds: int = 1_800
    report: PipelineSettings = field(default_factory=PipelineSettings)
    submission: PipelineSettings = field(default_factory=PipelineSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        return cls(
            db_path=db_path or Path(os.getenv("BULKFLOW_DB_PATH", ".bulkflow.db")),
            sqlite_busy_timeout_ms=int(os.getenv("BULKFLOW_SQLITE_BUSY_TIMEOUT_MS", "5000")),
            region=os.getenv("BULKFLOW_REGION", "europe"),
            account_id=os.getenv("BULKFLOW_ACCOUNT_ID", ""),
            instance_id=os.getenv("BULKFLOW_INSTANCE_ID", "default"),
            restrict_callbacks_to_originating_instance=_env_bool(
                "BULKFLOW_RESTRICT_CALLBACKS_TO_ORIGINATING_INSTANCE",
                default=False,
            ),
            lock_lease_seconds=int(os.getenv("BULKFLOW_LOCK_LEASE_SECONDS", "1800")),
            report=_pipeline_from_env("REPORT"),
            submission=_pipeline_from_env("SUBMISSION"),
        )

    def validate(self) -> None:
        """Raise configuration error if any option is out of range."""

        if self.sqlite_busy_timeout_ms <= 0:
            raise ValueError("BULKFLOW_SQLITE_BUSY_TIMEOUT_MS must be > 0.")
        if not self.region.strip():
            raise ValueError("BULKFLOW_REGION must not be empty.")
        if not self.account_id.strip():
            raise ValueError("BULKFLOW_ACCOUNT_ID is required to scope the queues.")
        if self.lock_lease_seconds <= 0:
            raise ValueError("BULKFLOW_LOCK_LEASE_SECONDS must be > 0.")
        for prefix, pipeline in (("REPORT", self.report), ("SUBMISSION", self.submission)):
            if pipeline.expiration_seconds <= 0:
                raise ValueError(f"BULKFLOW_{prefix}_EXPIRATION_SECONDS must be > 0.")
            for stage in _STAGES:
                retry: RetrySettings = getattr(pipeline, stage)
                env_prefix = f"BULKFLOW_{prefix}_{stage.upper()}"
                if retry.max_retry_count < 0:
                    raise ValueError(f"{env_prefix}_MAX_RETRY_COUNT must be >= 0.")
                if retry.initial_delay_seconds < 0:
                    raise ValueError(f"{env_prefix}_RETRY_INITIAL_DELAY_SECONDS must be >= 0.")
                if retry.interval_seconds < 0:
                    raise ValueError(f"{env_prefix}_RETRY_INTERVAL_SECONDS must be >= 0.")


_STAGES: tuple[str, ...] = ("submission", "processing", "download", "callback")


def _pipeline_from_env(prefix: str) -> PipelineSettings:
    defaults = PipelineSettings()
    stages = {
        stage: _retry_from_env(f"BULKFLOW_{prefix}_{stage.upper()}", getattr(defaults, stage))
        for stage in _STAGES
    }
    return PipelineSettings(
        expiration_seconds=int(
            os.getenv(f"BULKFLOW_{prefix}_EXPIRATION_SECONDS", str(defaults.expiration_seconds)),
        ),
        **stages,
    )


def _retry_from_env(env_prefix: str, default: RetrySettings) -> RetrySettings:
    progression_raw = os.getenv(f"{env_prefix}_RETRY_PROGRESSION")
    try:
        progression = (
            RetryProgression(progression_raw.strip().lower())
            if progression_raw
            else default.progression
        )
    except ValueError as error:
        raise ValueError(
            f"Invalid {env_prefix}_RETRY_PROGRESSION: {progression_raw!r}. "
            "Expected 'arithmetic' or 'geometric'.",
        ) from error
    return RetrySettings(
        max_retry_count=int(
            os.getenv(f"{env_prefix}_MAX_RETRY_COUNT", str(default.max_retry_count)),
        ),
        initial_delay_seconds=float(
            os.getenv(
                f"{env_prefix}_RETRY_INITIAL_DELAY_SECONDS",
                str(default.initial_delay_seconds),
            ),
        ),
        interval_seconds=float(
            os.getenv(f"{env_prefix}_RETRY_INTERVAL_SECONDS", str(default.interval_seconds)),
        ),
        progression=progression,
    )


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
