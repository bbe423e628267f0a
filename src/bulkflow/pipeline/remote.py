"""Contract of the remote bulk-data service consumed by the pipeline."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol

from bulkflow.pipeline.models import DownloadResult, RemoteStatusReport, SubmitRequest


class RemoteWorkService(Protocol):
    """Wire-level client for one pipeline kind.

    Implementations raise :class:`bulkflow.errors.RemoteServiceError` with the
    remote error code on API failures. Transport failures may surface as
    ``OSError``. Any other exception is treated as a retryable client fault.
    """

    def submit(self, request: SubmitRequest) -> str | None:
        """Hand one unit of work to the remote side and return its request id."""

    def poll_statuses(self, request_ids: Sequence[str]) -> list[RemoteStatusReport]:
        """Return processing statuses for the given request ids."""

    def download(self, result_id: str) -> DownloadResult:
        """Fetch a finished result together with its declared checksum."""
