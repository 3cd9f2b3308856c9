"""
Photo model for storing photo metadata.
The actual image file lives under the photo storage root at storage_path.
The row is authoritative: a missing file means "not servable", not "not existing".
"""
import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import String, DateTime, Integer, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from qrbin.database import Base
from qrbin.utils.timeutil import utcnow

if TYPE_CHECKING:
    from qrbin.models.bin import Bin


class Photo(Base):
    """Photo attached to a bin."""

    __tablename__ = "photos"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=lambda: str(uuid.uuid4()))
    bin_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("bins.id", ondelete="CASCADE"), nullable=False, index=True
    )

    # File metadata
    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    mime_type: Mapped[str] = mapped_column(String(50), nullable=False)
    size: Mapped[int] = mapped_column(Integer, nullable=False)

    # Storage information: "<bin_id>/<file>" relative to the storage root
    storage_path: Mapped[str] = mapped_column(String(500), nullable=False)

    created_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    bin: Mapped["Bin"] = relationship("Bin", back_populates="photos")

    def __repr__(self) -> str:
        return f"<Photo(id={self.id}, bin_id={self.bin_id})>"
