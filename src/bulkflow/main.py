"""CLI entrypoint for bulkflow."""

import logging
from pathlib import Path

import rich_click as click

from bulkflow import __version__
from bulkflow.pipeline.controllers import (
    DbInitCommand,
    EntriesCliController,
    ListEntriesCommand,
    ScopeCommand,
)
from bulkflow.pipeline.profiles import PROFILES

click.rich_click.USE_MARKDOWN = True
ENTRIES_CONTROLLER = EntriesCliController()
KIND_CHOICE = click.Choice(sorted(PROFILES))


@click.group()
@click.version_option(version=__version__, prog_name="bulkflow")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
def bulkflow(verbose: bool) -> None:
    """Inspect and maintain the bulkflow work entry store."""

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@bulkflow.group()
def db() -> None:
    """Database commands."""


@db.command("init")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
def db_init(db_path: Path | None) -> None:
    """Create or migrate the work entry schema."""

    _emit_lines(ENTRIES_CONTROLLER.init_db(DbInitCommand(db_path=db_path)))


@bulkflow.group()
def entries() -> None:
    """Work entry commands."""


@entries.command("list")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--kind", type=KIND_CHOICE, default=None, help="Optional pipeline kind filter.")
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=1000),
    default=50,
    show_default=True,
    help="Maximum entries to show, oldest first.",
)
def entries_list(db_path: Path | None, kind: str | None, limit: int) -> None:
    """List queued entries with their stage and retry counters."""

    _emit_lines(
        ENTRIES_CONTROLLER.list_entries(
            ListEntriesCommand(
                db_path=db_path,
                kind=kind,
                limit=limit,
            ),
        ),
    )


def _scope_options(command):  # type: ignore[no-untyped-def]
    command = click.option(
        "--account-id",
        default=None,
        help="Account scope. Defaults to BULKFLOW_ACCOUNT_ID.",
    )(command)
    command = click.option(
        "--region",
        default=None,
        help="Region scope. Defaults to BULKFLOW_REGION.",
    )(command)
    command = click.option(
        "--kind",
        "kinds",
        type=KIND_CHOICE,
        multiple=True,
        help="Pipeline kind. Can be repeated. Defaults to all kinds.",
    )(command)
    return click.option(
        "--db-path",
        type=click.Path(path_type=Path),
        default=None,
        help="SQLite DB path.",
    )(command)


@entries.command("purge")
@_scope_options
@click.confirmation_option(prompt="Delete every entry of the selected scope?")
def entries_purge(
    db_path: Path | None,
    kinds: tuple[str, ...],
    region: str | None,
    account_id: str | None,
) -> None:
    """Delete all entries of one region and account."""

    _emit_lines(
        _run_scoped(
            ENTRIES_CONTROLLER.purge,
            db_path=db_path,
            kinds=kinds,
            region=region,
            account_id=account_id,
        ),
    )


@entries.command("sweep")
@_scope_options
def entries_sweep(
    db_path: Path | None,
    kinds: tuple[str, ...],
    region: str | None,
    account_id: str | None,
) -> None:
    """Delete exhausted or expired entries and release stale locks without remote calls."""

    _emit_lines(
        _run_scoped(
            ENTRIES_CONTROLLER.sweep,
            db_path=db_path,
            kinds=kinds,
            region=region,
            account_id=account_id,
        ),
    )


def _run_scoped(  # type: ignore[no-untyped-def]
    handler,
    *,
    db_path: Path | None,
    kinds: tuple[str, ...],
    region: str | None,
    account_id: str | None,
) -> list[str]:
    try:
        return handler(
            ScopeCommand(
                db_path=db_path,
                kinds=kinds or tuple(sorted(PROFILES)),
                region=region,
                account_id=account_id,
            ),
        )
    except ValueError as error:
        raise click.ClickException(str(error)) from error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    bulkflow()
