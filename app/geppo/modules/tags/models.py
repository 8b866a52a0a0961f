from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import DateTime, Enum, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from app.geppo.models import Base


class TagStatus(enum.Enum):
    unfixed = "unfixed"
    fixed = "fixed"


class Tag(Base):
    __tablename__ = "tags"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    status: Mapped[TagStatus] = mapped_column(
        Enum(TagStatus, native_enum=False, length=16, validate_strings=True),
        nullable=False,
        default=TagStatus.unfixed,
    )

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    def __repr__(self) -> str:
        return f"<Tag id={self.id} name={self.name!r} status={self.status.value}>"
