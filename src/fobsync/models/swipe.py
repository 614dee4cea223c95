# src/fobsync/models/swipe.py
"""SQLAlchemy model for archived card swipes."""

from datetime import UTC, datetime

from sqlalchemy import BigInteger, DateTime, Index, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from fobsync.db.session import Base


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Swipe(Base):
    """One card swipe copied from the access controller's log.

    The primary key is the device's own log index, so re-ingesting the same
    swipe is a no-op.
    """

    __tablename__ = "swipes"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    card_id: Mapped[int] = mapped_column(Integer, nullable=False)
    door_id: Mapped[str] = mapped_column(Text, nullable=False, default="")
    time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    seen_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, default=_utcnow
    )

    __table_args__ = (
        Index("idx_swipes_card_id", "card_id"),
        Index("idx_swipes_time", "time"),
    )
