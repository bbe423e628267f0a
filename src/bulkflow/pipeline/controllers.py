"""Controllers for operator CLI commands."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from bulkflow.config import Settings
from bulkflow.pipeline.cleanup import CleanupSweeper
from bulkflow.pipeline.profiles import PROFILES
from bulkflow.pipeline.repository import EntryRepository


@dataclass(slots=True)
class DbInitCommand:
    """CLI input for schema migration."""

    db_path: Path | None


@dataclass(slots=True)
class ListEntriesCommand:
    """CLI input for entry listing."""

    db_path: Path | None
    kind: str | None
    limit: int


@dataclass(slots=True)
class ScopeCommand:
    """CLI input for operations on one queue scope."""

    db_path: Path | None
    kinds: tuple[str, ...]
    region: str | None
    account_id: str | None


class EntriesCliController:
    """Coordinates schema, inspection and maintenance CLI operations."""

    def init_db(self, command: DbInitCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings):
            pass
        return [f"Database schema is up to date: {settings.db_path}"]

    def list_entries(self, command: ListEntriesCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            entries = repository.list_entries(kind=command.kind, limit=command.limit)

        lines = [f"Entries: {len(entries)}"]
        for entry in entries:
            last_attempt = (
                entry.last_attempt_at.isoformat() if entry.last_attempt_at is not None else "-"
            )
            lines.append(
                f"  {entry.entry_id} kind={entry.kind} type={entry.work_type} "
                f"stage={entry.stage.value} region={entry.region} account={entry.account_id} "
                f"request={entry.remote_request_id or '-'} "
                f"status={entry.last_remote_status or '-'} "
                f"retries={entry.submission_retry_count}/{entry.processing_retry_count}/"
                f"{entry.download_retry_count}/{entry.callback_retry_count} "
                f"locked={'yes' if entry.is_locked else 'no'} last_attempt={last_attempt}",
            )
        return lines

    def purge(self, command: ScopeCommand) -> list[str]:
        settings = _scoped_settings(command)
        lines: list[str] = []
        with _repository(settings) as repository:
            for kind in command.kinds:
                entries = repository.get_all(
                    kind=kind,
                    region=settings.region,
                    account_id=settings.account_id,
                )
                repository.delete_many(entries)
                repository.save_changes()
                lines.append(f"Purged {kind} entries: {len(entries)}")
        return lines

    def sweep(self, command: ScopeCommand) -> list[str]:
        settings = _scoped_settings(command)
        lines: list[str] = []
        with _repository(settings) as repository:
            for kind in command.kinds:
                result = CleanupSweeper(
                    repository=repository,
                    settings=getattr(settings, kind),
                    kind=kind,
                    region=settings.region,
                    account_id=settings.account_id,
                    lock_lease_seconds=settings.lock_lease_seconds,
                ).sweep()
                lines.append(
                    f"Swept {kind} entries: deleted={result.deleted_count} "
                    f"released_locks={result.released_locks}",
                )
                for entry_id, reasons in result.deleted.items():
                    lines.append(f"  {entry_id} reasons={','.join(reasons)}")
        return lines


def _scoped_settings(command: ScopeCommand) -> Settings:
    settings = Settings.from_env(db_path=command.db_path)
    if command.region is not None:
        settings.region = command.region
    if command.account_id is not None:
        settings.account_id = command.account_id
    settings.validate()
    unknown = [kind for kind in command.kinds if kind not in PROFILES]
    if unknown:
        raise ValueError(f"Unknown entry kind(s): {', '.join(unknown)}")
    return settings


@contextmanager
def _repository(settings: Settings) -> Iterator[EntryRepository]:
    repository = EntryRepository(
        settings.db_path,
        sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()
