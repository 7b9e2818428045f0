from datetime import datetime, timezone

from sqlalchemy import JSON, DateTime, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class SequenceGroupRecord(Base):
    """A sequence group detected in an upload batch, kept so process requests can name it."""

    __tablename__ = "sequence_groups"
    __table_args__ = (UniqueConstraint("session_id", "group_id", name="uq_group_session_group"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    group_id: Mapped[str] = mapped_column(String(32), nullable=False)
    encoding: Mapped[str] = mapped_column(String(1), nullable=False)
    sequence_number: Mapped[int] = mapped_column(Integer, nullable=False)
    # [{"chapter": 1, "original_name": ..., "stored_path": ..., "size_bytes": ...}, ...]
    chapters: Mapped[list[dict]] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False
    )

    @property
    def input_paths(self) -> list[str]:
        return [chapter["stored_path"] for chapter in self.chapters]
