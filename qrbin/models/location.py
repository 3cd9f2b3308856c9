"""
Location model: the shared space that owns a set of bins.
Members of a location see and edit all of its bins.
"""
import uuid
from datetime import datetime
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import String, DateTime, Integer, ForeignKey, UniqueConstraint, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from qrbin.database import Base
from qrbin.utils.timeutil import utcnow

if TYPE_CHECKING:
    from qrbin.models.bin import Bin


def _new_id() -> str:
    return str(uuid.uuid4())


class Location(Base):
    """Location (tenant scope) with its retention settings."""

    __tablename__ = "locations"
    __table_args__ = (
        CheckConstraint("trash_retention_days BETWEEN 7 AND 365", name="chk_trash_retention"),
        CheckConstraint("activity_retention_days BETWEEN 7 AND 365", name="chk_activity_retention"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    created_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    # 휴지통 보관 기간 (일), 지나면 sweep에서 영구 삭제
    trash_retention_days: Mapped[int] = mapped_column(Integer, nullable=False, default=30)
    activity_retention_days: Mapped[int] = mapped_column(Integer, nullable=False, default=90)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    members: Mapped[List["LocationMember"]] = relationship(
        "LocationMember", back_populates="location", cascade="all, delete-orphan", passive_deletes=True
    )
    bins: Mapped[List["Bin"]] = relationship(
        "Bin", back_populates="location", cascade="all, delete-orphan", passive_deletes=True
    )

    def __repr__(self) -> str:
        return f"<Location(id={self.id}, name={self.name})>"


class LocationMember(Base):
    """Membership of a user in a location."""

    __tablename__ = "location_members"
    __table_args__ = (UniqueConstraint("location_id", "user_id", name="uq_location_member"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    location_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("locations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="member")
    joined_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    location: Mapped["Location"] = relationship("Location", back_populates="members")

    def __repr__(self) -> str:
        return f"<LocationMember(location_id={self.location_id}, user_id={self.user_id})>"


class Area(Base):
    """Named area inside a location (e.g. "Garage"), referenced by bins."""

    __tablename__ = "areas"
    __table_args__ = (UniqueConstraint("location_id", "name", name="uq_area_name"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    location_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("locations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    def __repr__(self) -> str:
        return f"<Area(id={self.id}, name={self.name})>"
