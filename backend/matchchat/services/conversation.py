"""Conversation session: one viewer's lifecycle for one open conversation."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

from matchchat.schemas.message import ConversationSnapshot, MessageCreate, MessageRead, SenderRole
from matchchat.services.change_feed import ChannelStatus
from matchchat.services.delivery import DeliveryCallbacks, DeliveryDeduplicator
from matchchat.services.errors import DeliveryError, SendFailure, SessionStartError, ValidationError
from matchchat.services.message_store import MessageStore
from matchchat.services.messages import validate_content
from matchchat.services.timeline import MessageTimeline

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    CLOSED = "closed"
    OPENING = "opening"
    OPEN = "open"
    CLOSING = "closing"


@dataclass(slots=True)
class SessionListeners:
    """Listeners registered by the view for one conversation."""

    on_message: list[Callable[[MessageRead], None]] = field(default_factory=list)
    on_update: list[Callable[[MessageRead], None]] = field(default_factory=list)
    on_remove: list[Callable[[int], None]] = field(default_factory=list)
    on_status: list[Callable[[ChannelStatus, str | None], None]] = field(default_factory=list)


def _notify(listeners: list[Callable], *args) -> None:
    for listener in list(listeners):
        try:
            listener(*args)
        except Exception:
            logger.exception("session.listener_failed listener=%r", listener)


class ConversationSession:
    """Binds the initial fetch, read receipts and delivery for one conversation.

    State moves ``closed -> opening -> open -> closing -> closed``. Only an
    open session applies delivered messages to its timeline; anything that
    arrives in another state is dropped.
    """

    def __init__(
        self,
        match_id: str,
        *,
        store: MessageStore,
        deduplicator: DeliveryDeduplicator,
        viewer_id: str,
        viewer_role: SenderRole | None,
        timeline: MessageTimeline,
        listeners: SessionListeners | None = None,
        initial_page_size: int = 50,
    ) -> None:
        self.match_id = match_id
        self.store = store
        self.deduplicator = deduplicator
        self.viewer_id = viewer_id
        self.viewer_role = viewer_role
        self.timeline = timeline
        self.listeners = listeners or SessionListeners()
        self.initial_page_size = initial_page_size
        self.state = SessionState.CLOSED
        self.snapshot: ConversationSnapshot | None = None
        self.channel_status: ChannelStatus | None = None

    async def enter(self) -> ConversationSnapshot:
        """Fetch the initial page, mark it read, then start delivery."""

        if self.state in (SessionState.OPENING, SessionState.OPEN) and self.snapshot is not None:
            return self.snapshot
        self.state = SessionState.OPENING
        try:
            messages = await self.store.fetch_messages(
                self.match_id,
                viewer_id=self.viewer_id,
                limit=self.initial_page_size,
                offset=0,
            )
        except Exception as exc:
            self.state = SessionState.CLOSED
            logger.exception("session.initial_fetch_failed match_id=%s viewer_id=%s", self.match_id, self.viewer_id)
            raise SessionStartError(self.match_id) from exc

        self.timeline.load(messages)
        self.snapshot = ConversationSnapshot(match_id=self.match_id, messages=messages)
        if self.state is not SessionState.OPENING:
            return self.snapshot

        try:
            await self.store.mark_read(self.match_id, self.viewer_id)
        except Exception:
            logger.warning("session.mark_read_failed match_id=%s viewer_id=%s", self.match_id, self.viewer_id, exc_info=True)
        if self.state is not SessionState.OPENING:
            return self.snapshot

        self.state = SessionState.OPEN
        await self.deduplicator.open(
            self.match_id,
            DeliveryCallbacks(
                on_message=self._handle_message,
                on_update=self._handle_update,
                on_remove=self._handle_remove,
                on_status=self._handle_status,
            ),
            seen_ids=[m.id for m in messages],
        )
        if self.state is not SessionState.OPEN:
            # Left while the feed subscription was being set up.
            self.deduplicator.close(self.match_id)
        logger.info(
            "session.entered match_id=%s viewer_id=%s messages=%d",
            self.match_id,
            self.viewer_id,
            len(messages),
        )
        return self.snapshot

    def leave(self) -> None:
        """Release poller and subscription. Safe to call repeatedly."""

        if self.state is SessionState.CLOSED:
            self.deduplicator.close(self.match_id)
            return
        self.state = SessionState.CLOSING
        self.deduplicator.close(self.match_id)
        self.state = SessionState.CLOSED
        logger.info("session.left match_id=%s viewer_id=%s", self.match_id, self.viewer_id)

    async def send(self, content: str) -> MessageRead:
        """Echo locally, insert, and roll the echo back if the insert fails."""

        trimmed = validate_content(content)
        if self.state is not SessionState.OPEN:
            raise DeliveryError(f"Conversation {self.match_id} is not open")

        echo = self.timeline.add_pending(self.match_id, trimmed, sender_role=self.viewer_role)
        try:
            return await self.store.insert_message(
                self.match_id,
                MessageCreate(sender_id=self.viewer_id, sender_role=self.viewer_role, content=trimmed),
            )
        except ValidationError:
            self.timeline.rollback(echo.id)
            raise
        except Exception as exc:
            self.timeline.rollback(echo.id)
            logger.exception("session.send_failed match_id=%s viewer_id=%s", self.match_id, self.viewer_id)
            raise SendFailure(self.match_id, restore_content=content, temp_id=echo.id) from exc

    async def delete_for_me(self, message_id: int) -> MessageRead:
        message = await self.store.soft_delete(message_id, self.viewer_id)
        self._handle_remove(message_id)
        return message

    def _handle_message(self, message: MessageRead) -> None:
        if self.state is not SessionState.OPEN:
            return
        if self.timeline.apply_delivered(message) is not None:
            _notify(self.listeners.on_message, message)

    def _handle_update(self, message: MessageRead) -> None:
        if self.state is not SessionState.OPEN:
            return
        if not message.is_visible_to(self.viewer_id):
            self._handle_remove(message.id)
        elif self.timeline.apply_update(message):
            _notify(self.listeners.on_update, message)

    def _handle_remove(self, message_id: int) -> None:
        if self.timeline.remove(message_id):
            _notify(self.listeners.on_remove, message_id)

    def _handle_status(self, status: ChannelStatus, detail: str | None) -> None:
        self.channel_status = status
        _notify(self.listeners.on_status, status, detail)
