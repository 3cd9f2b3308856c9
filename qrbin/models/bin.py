"""
Bin model: one physical storage container and what is inside it.

Lifecycle is a two-value state derived from deleted_at:
ACTIVE (deleted_at is NULL) and TRASHED (deleted_at set).
Permanent removal deletes the row, so there is no third state.
"""
import enum
import uuid
from datetime import datetime
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import String, DateTime, ForeignKey, Text, JSON, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from qrbin.database import Base
from qrbin.utils.timeutil import utcnow

if TYPE_CHECKING:
    from qrbin.models.location import Location
    from qrbin.models.photo import Photo


class BinState(str, enum.Enum):
    """Lifecycle state of a bin."""
    ACTIVE = "active"
    TRASHED = "trashed"


class Bin(Base):
    """Bin model. Photos are deleted with the bin (ON DELETE CASCADE)."""

    __tablename__ = "bins"
    __table_args__ = (
        Index("idx_bins_location_updated", "location_id", "updated_at"),
        Index("idx_bins_location_deleted", "location_id", "deleted_at"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=lambda: str(uuid.uuid4()))
    location_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("locations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    area_id: Mapped[Optional[str]] = mapped_column(
        String(64), ForeignKey("areas.id", ondelete="SET NULL"), nullable=True
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    items: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    notes: Mapped[str] = mapped_column(Text, nullable=False, default="")
    tags: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    icon: Mapped[str] = mapped_column(String(50), nullable=False, default="")
    color: Mapped[str] = mapped_column(String(50), nullable=False, default="")

    # 전역 유니크 (라벨에 인쇄된 코드로 어느 location에서든 조회 가능)
    short_code: Mapped[str] = mapped_column(String(6), nullable=False, unique=True)

    created_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    location: Mapped["Location"] = relationship("Location", back_populates="bins")
    photos: Mapped[List["Photo"]] = relationship(
        "Photo", back_populates="bin", cascade="all, delete-orphan", passive_deletes=True
    )

    @property
    def state(self) -> BinState:
        """Current lifecycle state."""
        return BinState.ACTIVE if self.deleted_at is None else BinState.TRASHED

    def __repr__(self) -> str:
        return f"<Bin(id={self.id}, short_code={self.short_code}, state={self.state.value})>"
