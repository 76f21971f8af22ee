"""Rendered message list for one viewer, including optimistic local echoes."""

from __future__ import annotations

import bisect
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from matchchat.schemas.message import MessageRead

TEMP_ID_PREFIX = "temp-"


def new_temporary_id() -> str:
    return f"{TEMP_ID_PREFIX}{uuid.uuid4().hex}"


def is_temporary_id(value: object) -> bool:
    """Store ids are integers, so a ``temp-`` string can never collide with one."""

    return isinstance(value, str) and value.startswith(TEMP_ID_PREFIX)


@dataclass(slots=True)
class TimelineEntry:
    """One rendered bubble."""

    id: int | str
    match_id: str
    sender_id: str
    content: str
    created_at: datetime
    sender_role: str | None = None
    read_at: datetime | None = None
    is_system_message: bool = False
    pending: bool = False

    @classmethod
    def from_message(cls, message: MessageRead) -> TimelineEntry:
        return cls(
            id=message.id,
            match_id=message.match_id,
            sender_id=message.sender_id,
            content=message.content,
            created_at=message.created_at,
            sender_role=message.sender_role,
            read_at=message.read_at,
            is_system_message=message.is_system_message,
        )


def _sort_key(entry: TimelineEntry) -> tuple[datetime, int]:
    return (entry.created_at, entry.id)  # type: ignore[return-value]


class MessageTimeline:
    """Ordered confirmed messages followed by pending local echoes.

    A delivered message that matches a pending echo (same sender, same
    trimmed content, created within ``match_window``) replaces it. Echoes
    nobody confirms stay in place until rolled back.
    """

    def __init__(self, viewer_id: str, *, match_window: timedelta = timedelta(seconds=30)) -> None:
        self.viewer_id = viewer_id
        self.match_window = match_window
        self._confirmed: list[TimelineEntry] = []
        self._pending: list[TimelineEntry] = []

    @property
    def entries(self) -> list[TimelineEntry]:
        return [*self._confirmed, *self._pending]

    @property
    def pending(self) -> list[TimelineEntry]:
        return list(self._pending)

    def __len__(self) -> int:
        return len(self._confirmed) + len(self._pending)

    def message_ids(self) -> list[int]:
        return [entry.id for entry in self._confirmed]  # type: ignore[misc]

    def load(self, messages: list[MessageRead]) -> None:
        """Replace confirmed entries with a fetched page; pending echoes survive."""

        self._confirmed = sorted(
            (TimelineEntry.from_message(m) for m in messages if m.is_visible_to(self.viewer_id)),
            key=_sort_key,
        )

    def add_pending(
        self,
        match_id: str,
        content: str,
        *,
        sender_role: str | None = None,
        now: datetime | None = None,
    ) -> TimelineEntry:
        entry = TimelineEntry(
            id=new_temporary_id(),
            match_id=match_id,
            sender_id=self.viewer_id,
            content=content.strip(),
            created_at=now or datetime.now(timezone.utc),
            sender_role=sender_role,
            pending=True,
        )
        self._pending.append(entry)
        return entry

    def rollback(self, temp_id: str) -> TimelineEntry | None:
        for index, entry in enumerate(self._pending):
            if entry.id == temp_id:
                return self._pending.pop(index)
        return None

    def apply_delivered(self, message: MessageRead) -> TimelineEntry | None:
        """Insert a store-confirmed message in order, resolving a matching echo."""

        if not message.is_visible_to(self.viewer_id):
            return None
        existing = self._find(message.id)
        if existing is not None:
            self._merge(existing, message)
            return existing

        echo = self._match_pending(message)
        if echo is not None:
            self._pending.remove(echo)
        entry = TimelineEntry.from_message(message)
        bisect.insort(self._confirmed, entry, key=_sort_key)
        return entry

    def apply_update(self, message: MessageRead) -> bool:
        if not message.is_visible_to(self.viewer_id):
            return self.remove(message.id)
        existing = self._find(message.id)
        if existing is None:
            return False
        self._merge(existing, message)
        return True

    def remove(self, message_id: int) -> bool:
        for index, entry in enumerate(self._confirmed):
            if entry.id == message_id:
                del self._confirmed[index]
                return True
        return False

    def unread_count(self) -> int:
        return sum(1 for e in self._confirmed if e.sender_id != self.viewer_id and e.read_at is None)

    def _find(self, message_id: int) -> TimelineEntry | None:
        for entry in self._confirmed:
            if entry.id == message_id:
                return entry
        return None

    def _match_pending(self, message: MessageRead) -> TimelineEntry | None:
        content = message.content.strip()
        for entry in self._pending:
            if (
                entry.sender_id == message.sender_id
                and entry.content == content
                and abs(message.created_at - entry.created_at) <= self.match_window
            ):
                return entry
        return None

    @staticmethod
    def _merge(entry: TimelineEntry, message: MessageRead) -> None:
        entry.content = message.content
        entry.read_at = message.read_at
        entry.sender_role = message.sender_role
        entry.is_system_message = message.is_system_message
