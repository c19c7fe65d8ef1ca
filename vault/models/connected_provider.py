"""
Connected provider model: a user's authorized link to an external photo library.
"""
from datetime import datetime
from typing import TYPE_CHECKING, Any, List, Optional

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from vault.database import Base
from vault.utils.clock import utcnow

if TYPE_CHECKING:
    from vault.models.sync_job import SyncJob


class ConnectedProvider(Base):
    """OAuth tokens and sync preferences for one provider connection."""

    __tablename__ = "connected_providers"
    __table_args__ = (
        UniqueConstraint("user_id", "provider", name="uq_connected_providers_user_provider"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    provider: Mapped[str] = mapped_column(String(50), nullable=False)
    display_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    access_token: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    refresh_token: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    token_expiry: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    sync_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    auto_sync_frequency: Mapped[str] = mapped_column(String(20), default="daily", nullable=False)
    # Filter configuration copied into each new sync job
    settings: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    last_sync: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    sync_jobs: Mapped[List["SyncJob"]] = relationship(
        "SyncJob", back_populates="provider", cascade="all, delete-orphan"
    )

    def token_expired(self, now: datetime) -> bool:
        return self.token_expiry is not None and self.token_expiry <= now

    def __repr__(self) -> str:
        return f"<ConnectedProvider(id={self.id}, provider={self.provider})>"
