"""
Photo model for storing photo metadata, scores and tier.
Image bytes live in the blob store under ``storage_path``.
"""
from datetime import datetime
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import (
    JSON,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from vault.database import Base
from vault.services.scoring import PhotoTier, ScoredPhoto, tier_for_score
from vault.utils.clock import utcnow

if TYPE_CHECKING:
    from vault.models.user import User

MANUAL_UPLOAD = "manual_upload"


def enum_column(enum_cls) -> Enum:
    """Store enum values (not names) as plain strings."""
    return Enum(
        enum_cls,
        native_enum=False,
        length=20,
        values_callable=lambda members: [m.value for m in members],
    )


class Photo(Base):
    """
    One ingested photo, from either ingestion path.

    Uniqueness per owner: content hash among manual uploads, and
    (provider, external_id) for provider imports. Imported rows keep their
    hash for reference only; two library items with identical bytes are two
    photos. Inserts that violate either constraint are treated as duplicates.
    """

    __tablename__ = "photos"
    __table_args__ = (
        Index(
            "uq_photos_user_hash",
            "user_id",
            "file_hash",
            unique=True,
            sqlite_where=text(f"provider = '{MANUAL_UPLOAD}'"),
            postgresql_where=text(f"provider = '{MANUAL_UPLOAD}'"),
        ),
        UniqueConstraint("user_id", "provider", "external_id", name="uq_photos_user_provider_external"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )

    # Source
    provider: Mapped[str] = mapped_column(String(50), default=MANUAL_UPLOAD, nullable=False)
    external_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    sync_job_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("sync_jobs.id", ondelete="SET NULL"), nullable=True
    )
    source_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # File metadata
    file_hash: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    storage_path: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    mime_type: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    file_size: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    width: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    height: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    orientation: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    date_taken: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    camera_data: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
    provider_metadata: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
    location_data: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
    dominant_color: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    # Scores
    technical_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    commercial_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    artistic_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    emotional_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    overall_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True, index=True)
    tier: Mapped[PhotoTier] = mapped_column(
        enum_column(PhotoTier), default=PhotoTier.ARCHIVE, nullable=False
    )
    ai_analysis: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    analyzed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    # Terminal scoring failures seen by the auto-analyze sweep
    analysis_attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    analysis_failed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    owner: Mapped["User"] = relationship("User", back_populates="photos")

    @property
    def is_scored(self) -> bool:
        return self.overall_score is not None

    def apply_score(self, scored: ScoredPhoto) -> None:
        """Copy scores onto the row; tier always follows the overall score."""
        self.technical_score = scored.result.technical
        self.commercial_score = scored.result.commercial
        self.artistic_score = scored.result.artistic
        self.emotional_score = scored.result.emotional
        self.overall_score = scored.overall
        self.tier = tier_for_score(scored.overall)
        self.ai_analysis = scored.result.analysis
        self.analyzed_at = utcnow()

    def record_analysis_failure(self) -> None:
        self.analysis_attempts = (self.analysis_attempts or 0) + 1
        self.analysis_failed_at = utcnow()

    def __repr__(self) -> str:
        return f"<Photo(id={self.id}, filename={self.filename}, tier={self.tier})>"
