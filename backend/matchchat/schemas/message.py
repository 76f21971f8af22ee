"""Message request/response schemas."""

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

SenderRole = Literal["organization", "engineer"]


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes for timezone-aware columns.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class MessageCreate(BaseModel):
    """Send payload for one chat message."""

    sender_id: str = Field(min_length=1)
    sender_role: SenderRole | None = None
    content: str
    is_system_message: bool = False


class MessageRead(BaseModel):
    """Serialized message as seen by one viewer."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    match_id: str
    sender_id: str
    sender_role: SenderRole | None = None
    content: str
    created_at: datetime
    read_at: datetime | None = None
    is_system_message: bool = False
    deleted_by: list[str] = Field(default_factory=list)

    @field_validator("created_at", "read_at")
    @classmethod
    def normalize_timezone(cls, value: datetime | None) -> datetime | None:
        return _as_utc(value)

    def is_visible_to(self, viewer_id: str) -> bool:
        """Return whether the viewer has not soft-deleted this message."""

        return viewer_id not in self.deleted_by


class ConversationSnapshot(BaseModel):
    """Initial message page returned when a conversation is entered."""

    match_id: str
    messages: list[MessageRead] = Field(default_factory=list)


class ViewerRequest(BaseModel):
    """Payload naming the acting viewer."""

    viewer_id: str = Field(min_length=1)


class MarkReadResult(BaseModel):
    """Outcome of stamping read receipts for one conversation."""

    match_id: str
    message_ids: list[int] = Field(default_factory=list)


class DeleteForMeResult(BaseModel):
    """Outcome of a per-viewer soft delete."""

    id: int
    viewer_id: str
    deleted: bool = True
