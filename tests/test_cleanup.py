from __future__ import annotations

from datetime import timedelta

import allure

from bulkflow.config import PipelineSettings
from bulkflow.pipeline.cleanup import CleanupSweeper, expiry_reasons
from bulkflow.pipeline.repository import EntryRepository
from bulkflow.storage.common import to_db_datetime
from bulkflow.storage.sqlmodel_models import WorkEntry

pytestmark = [
    allure.epic("Entry Pipeline"),
    allure.feature("Cleanup Sweeper"),
]


def _store(repository: EntryRepository, clock, **overrides) -> WorkEntry:
    values = {
        "kind": "report",
        "region": "europe",
        "account_id": "A1",
        "work_type": "_GET_ORDERS_",
        "request_content": b"payload",
        "created_at": to_db_datetime(clock()),
    }
    values.update(overrides)
    entry = WorkEntry(**values)
    repository.create(entry)
    repository.save_changes()
    return entry


def _sweeper(repository: EntryRepository, clock, **overrides) -> CleanupSweeper:
    values = {
        "repository": repository,
        "settings": PipelineSettings(),
        "kind": "report",
        "region": "europe",
        "account_id": "A1",
        "clock": clock,
    }
    values.update(overrides)
    return CleanupSweeper(**values)


def test_expiry_reasons_collects_every_matching_criterion(clock) -> None:
    entry = WorkEntry(
        kind="report",
        region="europe",
        account_id="A1",
        work_type="_GET_ORDERS_",
        request_content=b"x",
        download_retry_count=4,
        callback_retry_count=5,
        created_at=to_db_datetime(clock() - timedelta(days=3)),
    )

    reasons = expiry_reasons(entry, settings=PipelineSettings(), now=clock())

    assert reasons == ("download_retries_exhausted", "callback_retries_exhausted", "expired")


def test_submission_budget_only_applies_before_acceptance(clock) -> None:
    accepted = WorkEntry(
        kind="report",
        region="europe",
        account_id="A1",
        work_type="_GET_ORDERS_",
        request_content=b"x",
        remote_request_id="R1",
        submission_retry_count=9,
        created_at=to_db_datetime(clock()),
    )

    assert expiry_reasons(accepted, settings=PipelineSettings(), now=clock()) == ()


def test_retry_count_at_limit_is_kept(clock) -> None:
    entry = WorkEntry(
        kind="report",
        region="europe",
        account_id="A1",
        work_type="_GET_ORDERS_",
        request_content=b"x",
        processing_retry_count=3,
        created_at=to_db_datetime(clock() - timedelta(days=2)),
    )

    assert expiry_reasons(entry, settings=PipelineSettings(), now=clock()) == ()


def test_sweep_deletes_union_of_criteria_in_scope(repository, clock) -> None:
    exhausted = _store(repository, clock, submission_retry_count=5)
    processing = _store(repository, clock, remote_request_id="R1", processing_retry_count=4)
    expired = _store(repository, clock, created_at=to_db_datetime(clock() - timedelta(days=3)))
    healthy = _store(repository, clock)
    other_kind = _store(repository, clock, kind="submission", submission_retry_count=5)

    result = _sweeper(repository, clock).sweep()

    assert result.deleted == {
        exhausted.id: ("submission_retries_exhausted",),
        processing.id: ("processing_retries_exhausted",),
        expired.id: ("expired",),
    }
    assert result.deleted_count == 3
    assert {entry.id for entry in repository.get_all()} == {healthy.id, other_kind.id}


def test_sweep_deletes_locked_entries_and_releases_stale_locks(repository, clock) -> None:
    doomed = _store(repository, clock, download_retry_count=4)
    stale = _store(repository, clock)
    repository.try_lock(doomed, now=clock())
    repository.try_lock(stale, now=clock())
    clock.advance(seconds=600)

    result = _sweeper(repository, clock, lock_lease_seconds=300).sweep()

    assert result.deleted_count == 1
    assert result.released_locks == 2
    remaining = repository.get_all()
    assert [entry.id for entry in remaining] == [stale.id]
    assert remaining[0].is_locked is False


def test_sweep_without_work_changes_nothing(repository, clock) -> None:
    entry = _store(repository, clock)

    result = _sweeper(repository, clock).sweep()

    assert result.deleted == {}
    assert result.released_locks == 0
    assert [stored.id for stored in repository.get_all()] == [entry.id]


def test_sweep_without_work_ends_its_transaction(repository, clock, tmp_path) -> None:
    _sweeper(repository, clock).sweep()

    other_poller = EntryRepository(tmp_path / "bulkflow.db", sqlite_busy_timeout_ms=200)
    try:
        queued = _store(other_poller, clock)
    finally:
        other_poller.close()

    assert [entry.id for entry in repository.get_all()] == [queued.id]
