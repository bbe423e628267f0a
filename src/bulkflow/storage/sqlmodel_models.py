"""SQLModel ORM tables for the work entry queue."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, Index, LargeBinary, Text
from sqlmodel import Field, SQLModel


class WorkEntry(SQLModel, table=True):
    __tablename__ = "work_entries"  # type: ignore[bad-override]
    __table_args__ = (
        Index("idx_work_entries_scope", "kind", "region", "account_id", "is_locked"),
    )

    id: int | None = Field(default=None, primary_key=True)
    kind: str = Field(index=True)
    region: str
    account_id: str
    work_type: str
    instance_id: str | None = Field(default=None, index=True)
    request_content: bytes = Field(sa_column=Column(LargeBinary, nullable=False))
    request_parameters_json: str | None = Field(default=None, sa_column=Column(Text))
    context_json: str | None = Field(default=None, sa_column=Column(Text))

    remote_request_id: str | None = Field(default=None, index=True)
    submission_retry_count: int = Field(default=0)

    remote_result_id: str | None = None
    last_remote_status: str | None = None
    processing_retry_count: int = Field(default=0)

    content: bytes | None = Field(default=None, sa_column=Column(LargeBinary, nullable=True))
    download_retry_count: int = Field(default=0)

    callback_key: str | None = None
    callback_payload_json: str | None = Field(default=None, sa_column=Column(Text))
    callback_retry_count: int = Field(default=0)

    is_locked: bool = Field(default=False)
    locked_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    last_attempt_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True)),
    )
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))

    @property
    def identity_description(self) -> str:
        """Short human-readable identity for log lines."""

        return (
            f"[{self.kind} id={self.id} type={self.work_type} "
            f"region={self.region} account={self.account_id} "
            f"request_id={self.remote_request_id}]"
        )
