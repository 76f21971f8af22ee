"""Message ORM models."""

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String, Text, UniqueConstraint, false
from sqlalchemy.orm import Mapped, mapped_column

from matchchat.models.base import Base, CreatedAtMixin, IdMixin


class Message(Base, IdMixin):
    """Stored chat message in one match conversation.

    Optional columns carry no Python-side default so that an insert which
    leaves them out never mentions them in SQL.
    """

    __tablename__ = "messages"

    match_id: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    sender_id: Mapped[str] = mapped_column(String(255), nullable=False)
    sender_role: Mapped[str | None] = mapped_column(String(32), nullable=True)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    read_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_system_message: Mapped[bool] = mapped_column(server_default=false(), nullable=False)


class MessageDeletion(Base, IdMixin, CreatedAtMixin):
    """Per-viewer soft delete marker."""

    __tablename__ = "message_deletions"
    __table_args__ = (UniqueConstraint("message_id", "viewer_id", name="uq_message_deletions_message_viewer"),)

    message_id: Mapped[int] = mapped_column(
        ForeignKey("messages.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    viewer_id: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
