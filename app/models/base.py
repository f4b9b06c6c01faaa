"""
PayCore - Base Model

Base model class and mixins for all SQLAlchemy models.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime, Integer
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TimestampMixin:
    """Mixin that adds created_at and updated_at timestamps."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )


class AuditMixin:
    """Mixin that adds audit fields for tracking who created/updated records."""

    created_by_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
    )
    updated_by_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
    )


class BaseModel(Base, TimestampMixin):
    """
    Abstract base model with integer primary key and timestamps.

    Identifiers are integers so they line up with the employee and
    actor ids issued by the HR services.
    """

    __abstract__ = True

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
    )

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(id={self.id})>"
