"""
Sync job model: one durable row per bulk import from an external provider.
"""
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from vault.database import Base
from vault.models.photo import enum_column
from vault.utils.clock import utcnow

if TYPE_CHECKING:
    from vault.models.connected_provider import ConnectedProvider


class SyncJobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETE = "complete"
    FAILED = "failed"


ACTIVE_STATUSES = (SyncJobStatus.PENDING, SyncJobStatus.RUNNING, SyncJobStatus.PAUSED)

GENERIC_FAILURE_MESSAGE = "Photo sync failed"


class SyncJob(Base):
    """
    Bulk import job.

    Counters: ``processed_count`` covers every examined item and equals the
    sum of the tier, skipped and failed counters. The runner holding the
    lease (``lease_owner`` until ``lease_expires_at``) is the only writer
    of progress; ``page_token``/``page_offset`` locate the next item.
    """

    __tablename__ = "sync_jobs"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    provider_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("connected_providers.id", ondelete="CASCADE"), nullable=False, index=True
    )
    status: Mapped[SyncJobStatus] = mapped_column(
        enum_column(SyncJobStatus), default=SyncJobStatus.PENDING, nullable=False, index=True
    )

    # Progress
    total_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    processed_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    vault_worthy_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    high_value_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    archive_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    skipped_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    failed_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Filter snapshot taken at creation
    filters: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)

    # Resume cursor: page being processed and index of the next item in it
    page_token: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    page_offset: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Runner lease
    lease_owner: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    lease_expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    retry_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    last_error_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    provider: Mapped["ConnectedProvider"] = relationship("ConnectedProvider", back_populates="sync_jobs")

    @property
    def is_terminal(self) -> bool:
        return self.status in (SyncJobStatus.COMPLETE, SyncJobStatus.FAILED)

    def __repr__(self) -> str:
        return f"<SyncJob(id={self.id}, status={self.status}, processed={self.processed_count})>"
