"""Client facade exposing the chat operations a view calls."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import timedelta

from matchchat.config import get_settings
from matchchat.schemas.message import ConversationSnapshot, MessageRead, SenderRole
from matchchat.services.change_feed import ChangeFeed, ChannelStatus
from matchchat.services.conversation import ConversationSession, SessionListeners, SessionState
from matchchat.services.delivery import DeliveryDeduplicator
from matchchat.services.errors import DeliveryError, SessionStartError
from matchchat.services.message_store import MessageStore
from matchchat.services.messages import validate_content
from matchchat.services.timeline import MessageTimeline

logger = logging.getLogger(__name__)


class ChatClient:
    """One viewer's chat surface. At most one conversation is open at a time.

    Entering another conversation leaves the current one first, so pollers
    and subscriptions never outlive the conversation on screen.
    """

    def __init__(
        self,
        store: MessageStore,
        feed: ChangeFeed,
        *,
        viewer_id: str,
        viewer_role: SenderRole | None = None,
        poll_interval_seconds: float | None = None,
        poll_page_size: int | None = None,
        initial_page_size: int | None = None,
        match_window_seconds: float | None = None,
    ) -> None:
        settings = get_settings()
        self.store = store
        self.viewer_id = viewer_id
        self.viewer_role = viewer_role
        self.initial_page_size = initial_page_size or settings.initial_page_size
        self.match_window = timedelta(
            seconds=settings.optimistic_match_window_seconds if match_window_seconds is None else match_window_seconds
        )
        self.deduplicator = DeliveryDeduplicator(
            store,
            feed,
            viewer_id=viewer_id,
            poll_interval_seconds=poll_interval_seconds,
            poll_page_size=poll_page_size,
        )
        self._session: ConversationSession | None = None
        self._listeners: dict[str, SessionListeners] = {}

    @property
    def session(self) -> ConversationSession | None:
        return self._session

    def timeline(self, match_id: str) -> MessageTimeline | None:
        session = self._session
        if session is None or session.match_id != match_id:
            return None
        return session.timeline

    async def enter_conversation(self, match_id: str) -> ConversationSnapshot:
        current = self._session
        if current is not None:
            if current.match_id == match_id and current.state is SessionState.OPEN and current.snapshot is not None:
                return current.snapshot
            logger.info("client.switch_conversation viewer_id=%s from=%s to=%s", self.viewer_id, current.match_id, match_id)
            self.leave_conversation(current.match_id)

        session = ConversationSession(
            match_id,
            store=self.store,
            deduplicator=self.deduplicator,
            viewer_id=self.viewer_id,
            viewer_role=self.viewer_role,
            timeline=MessageTimeline(self.viewer_id, match_window=self.match_window),
            listeners=self._listeners_for(match_id),
            initial_page_size=self.initial_page_size,
        )
        self._session = session
        try:
            return await session.enter()
        except SessionStartError:
            if self._session is session:
                self._session = None
            self._prune_listeners(match_id)
            raise

    def leave_conversation(self, match_id: str) -> None:
        session = self._session
        if session is not None and session.match_id == match_id:
            self._session = None
            session.leave()
        else:
            self.deduplicator.close(match_id)
        self._prune_listeners(match_id)

    def on_message(self, match_id: str, callback: Callable[[MessageRead], None]) -> Callable[[], None]:
        """Register for newly delivered messages; returns an unregister callable."""

        return self._register(match_id, self._listeners_for(match_id).on_message, callback)

    def on_update(self, match_id: str, callback: Callable[[MessageRead], None]) -> Callable[[], None]:
        return self._register(match_id, self._listeners_for(match_id).on_update, callback)

    def on_remove(self, match_id: str, callback: Callable[[int], None]) -> Callable[[], None]:
        return self._register(match_id, self._listeners_for(match_id).on_remove, callback)

    def on_status(
        self,
        match_id: str,
        callback: Callable[[ChannelStatus, str | None], None],
    ) -> Callable[[], None]:
        return self._register(match_id, self._listeners_for(match_id).on_status, callback)

    async def send(self, match_id: str, content: str) -> MessageRead:
        validate_content(content)
        return await self._require_open(match_id).send(content)

    async def delete_for_me(self, message_id: int) -> MessageRead:
        session = self._session
        if session is not None:
            return await session.delete_for_me(message_id)
        return await self.store.soft_delete(message_id, self.viewer_id)

    async def aclose(self) -> None:
        if self._session is not None:
            self.leave_conversation(self._session.match_id)
        self.deduplicator.close_all()

    async def __aenter__(self) -> ChatClient:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    def _require_open(self, match_id: str) -> ConversationSession:
        session = self._session
        if session is None or session.match_id != match_id or session.state is not SessionState.OPEN:
            raise DeliveryError(f"Conversation {match_id} is not open")
        return session

    def _listeners_for(self, match_id: str) -> SessionListeners:
        return self._listeners.setdefault(match_id, SessionListeners())

    def _prune_listeners(self, match_id: str) -> None:
        # Keep the entry while its conversation is open; the session holds it.
        session = self._session
        if session is not None and session.match_id == match_id:
            return
        listeners = self._listeners.get(match_id)
        if listeners is not None and not any(
            (listeners.on_message, listeners.on_update, listeners.on_remove, listeners.on_status)
        ):
            del self._listeners[match_id]

    def _register(self, match_id: str, bucket: list, callback: Callable) -> Callable[[], None]:
        bucket.append(callback)

        def unregister() -> None:
            if callback in bucket:
                bucket.remove(callback)
            self._prune_listeners(match_id)

        return unregister
