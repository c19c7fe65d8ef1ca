"""
User and per-user settings models.

Accounts are owned by the external auth service; rows here mirror the ids it
issues so photos and jobs can reference them.
"""
from datetime import datetime
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from vault.database import Base
from vault.services.scoring import ScoreWeights
from vault.utils.clock import utcnow

if TYPE_CHECKING:
    from vault.models.photo import Photo


class User(Base):
    """User account mirror."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), unique=True, index=True, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    photos: Mapped[List["Photo"]] = relationship(
        "Photo", back_populates="owner", cascade="all, delete-orphan"
    )
    settings: Mapped[Optional["UserSettings"]] = relationship(
        "UserSettings", back_populates="user", uselist=False, cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id})>"


class UserSettings(Base):
    """Relative score weights used to compute each photo's overall score."""

    __tablename__ = "user_settings"

    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    technical_weight: Mapped[int] = mapped_column(Integer, default=70)
    commercial_weight: Mapped[int] = mapped_column(Integer, default=80)
    artistic_weight: Mapped[int] = mapped_column(Integer, default=60)
    emotional_weight: Mapped[int] = mapped_column(Integer, default=50)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    user: Mapped["User"] = relationship("User", back_populates="settings")

    def to_weights(self) -> ScoreWeights:
        return ScoreWeights(
            technical=self.technical_weight,
            commercial=self.commercial_weight,
            artistic=self.artistic_weight,
            emotional=self.emotional_weight,
        )

    def __repr__(self) -> str:
        return f"<UserSettings(user_id={self.user_id})>"
