"""Persistent work entry store."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime
from pathlib import Path
from typing import Any

from sqlalchemy import or_
from sqlalchemy import update as sa_update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, col, select

from bulkflow.errors import EntryStoreError
from bulkflow.pipeline.models import WorkEntryView, stage_of
from bulkflow.storage.alembic_runner import upgrade_head
from bulkflow.storage.common import (
    build_sqlite_engine,
    to_db_datetime,
    to_utc_aware_datetime,
)
from bulkflow.storage.sqlmodel_models import WorkEntry

logger = logging.getLogger(__name__)


class EntryRepository:
    """Unit-of-work facade over the work entry table backed by SQLModel + SQLite.

    Mutations are staged with :meth:`create`, :meth:`update` and
    :meth:`delete` and become durable on :meth:`save_changes`. Queries always
    reload rows from the database so that changes made by other pollers
    sharing the file are visible.
    """

    def __init__(self, db_path: Path, *, sqlite_busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=sqlite_busy_timeout_ms)
        self._session = Session(self.engine, expire_on_commit=False)

    def close(self) -> None:
        """Close underlying DB resources."""

        self._session.close()
        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        upgrade_head(self.db_path)

    def create(self, entry: WorkEntry) -> None:
        self._session.add(entry)

    def update(self, entry: WorkEntry) -> None:
        self._session.add(entry)

    def delete(self, entry: WorkEntry) -> None:
        self._session.delete(entry)

    def delete_many(self, entries: Iterable[WorkEntry]) -> None:
        for entry in entries:
            self._session.delete(entry)

    def save_changes(self) -> None:
        """Commit every staged mutation in one transaction."""

        try:
            self._session.commit()
        except SQLAlchemyError as error:
            self._session.rollback()
            raise EntryStoreError(f"Failed to save work entries: {error}") from error

    def rollback(self) -> None:
        """Discard staged mutations."""

        self._session.rollback()

    def get(self, entry_id: int) -> WorkEntry | None:
        entries = self.where(col(WorkEntry.id) == entry_id)
        return entries[0] if entries else None

    def get_all(
        self,
        *,
        kind: str | None = None,
        region: str | None = None,
        account_id: str | None = None,
    ) -> list[WorkEntry]:
        """Ordered full scan, optionally narrowed to one queue scope."""

        clauses: list[Any] = []
        if kind is not None:
            clauses.append(col(WorkEntry.kind) == kind)
        if region is not None:
            clauses.append(col(WorkEntry.region) == region)
        if account_id is not None:
            clauses.append(col(WorkEntry.account_id) == account_id)
        return self.where(*clauses)

    def where(self, *clauses: Any) -> list[WorkEntry]:
        """Entries matching every clause, oldest first."""

        statement = (
            select(WorkEntry)
            .where(*clauses)
            .order_by(col(WorkEntry.id).asc())
            .execution_options(populate_existing=True)
        )
        try:
            return list(self._session.exec(statement).all())
        except SQLAlchemyError as error:
            self._session.rollback()
            raise EntryStoreError(f"Failed to query work entries: {error}") from error

    def try_lock(self, entry: WorkEntry, *, now: datetime) -> bool:
        """Atomically mark an unlocked entry as locked and commit.

        Returns ``False`` when another poller locked or removed the entry
        first. A lost race commits the empty transaction instead of rolling
        back, so loaded entries are not expired and reloaded from rows that
        may be gone.
        """

        entry_id = entry.id
        description = entry.identity_description
        try:
            result = self._session.exec(
                sa_update(WorkEntry)
                .where(
                    col(WorkEntry.id) == entry_id,
                    col(WorkEntry.is_locked).is_(False),
                )
                .values(is_locked=True, locked_at=to_db_datetime(now))
                .execution_options(synchronize_session=False),
            )
            if result.rowcount != 1:
                self._session.commit()
                logger.debug("Entry %s is owned or removed by another poller.", description)
                return False
            self._session.commit()
            self._session.refresh(entry)
        except SQLAlchemyError as error:
            self._session.rollback()
            raise EntryStoreError(f"Failed to lock work entry {entry_id}: {error}") from error
        logger.debug("Entry %s is now locked.", description)
        return True

    def release_expired_locks(
        self,
        *,
        kind: str,
        region: str,
        account_id: str,
        locked_before: datetime,
    ) -> int:
        """Unlock entries whose lock is older than ``locked_before``; not committed."""

        try:
            result = self._session.exec(
                sa_update(WorkEntry)
                .where(
                    col(WorkEntry.kind) == kind,
                    col(WorkEntry.region) == region,
                    col(WorkEntry.account_id) == account_id,
                    col(WorkEntry.is_locked).is_(True),
                    or_(
                        col(WorkEntry.locked_at).is_(None),
                        col(WorkEntry.locked_at) < to_db_datetime(locked_before),
                    ),
                )
                .values(is_locked=False, locked_at=None)
                .execution_options(synchronize_session=False),
            )
        except SQLAlchemyError as error:
            self._session.rollback()
            raise EntryStoreError(f"Failed to release expired locks: {error}") from error
        return result.rowcount

    def list_entries(self, *, kind: str | None = None, limit: int = 50) -> list[WorkEntryView]:
        """Snapshot views of the oldest entries, optionally filtered by kind."""

        clauses: list[Any] = []
        if kind is not None:
            clauses.append(col(WorkEntry.kind) == kind)
        return [to_entry_view(entry) for entry in self.where(*clauses)[:limit]]


def release_lock(entry: WorkEntry) -> None:
    """Clear the lock flag; persisted with the next save."""

    entry.is_locked = False
    entry.locked_at = None


def to_entry_view(entry: WorkEntry) -> WorkEntryView:
    return WorkEntryView(
        entry_id=entry.id or 0,
        kind=entry.kind,
        region=entry.region,
        account_id=entry.account_id,
        work_type=entry.work_type,
        stage=stage_of(entry),
        remote_request_id=entry.remote_request_id,
        remote_result_id=entry.remote_result_id,
        last_remote_status=entry.last_remote_status,
        submission_retry_count=entry.submission_retry_count,
        processing_retry_count=entry.processing_retry_count,
        download_retry_count=entry.download_retry_count,
        callback_retry_count=entry.callback_retry_count,
        is_locked=entry.is_locked,
        has_method_callback=entry.callback_key is not None,
        instance_id=entry.instance_id,
        last_attempt_at=(
            to_utc_aware_datetime(entry.last_attempt_at)
            if entry.last_attempt_at is not None
            else None
        ),
        created_at=to_utc_aware_datetime(entry.created_at),
    )
