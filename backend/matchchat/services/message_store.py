"""Async message store used by the delivery core."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Protocol, TypeVar

from sqlalchemy.orm import Session

from matchchat.schemas.message import MessageCreate, MessageRead
from matchchat.services import messages as message_service
from matchchat.services.change_feed import ChangeEvent, ChangePublisher, ChangeType

logger = logging.getLogger(__name__)

T = TypeVar("T")


class MessageStore(Protocol):
    """Durable, per-conversation ordered message storage."""

    async def insert_message(self, match_id: str, payload: MessageCreate) -> MessageRead: ...

    async def fetch_messages(
        self,
        match_id: str,
        *,
        viewer_id: str,
        limit: int,
        offset: int = 0,
    ) -> list[MessageRead]:
        """Page of visible messages, oldest to newest; ``offset`` counts back from the newest."""

    async def fetch_recent_messages(self, match_id: str, *, viewer_id: str, limit: int) -> list[MessageRead]: ...

    async def mark_read(self, match_id: str, viewer_id: str) -> list[MessageRead]: ...

    async def soft_delete(self, message_id: int, viewer_id: str) -> MessageRead: ...


class SqlMessageStore:
    """SQLAlchemy-backed store; blocking work runs in worker threads.

    Each call opens and closes its own session. Committed writes are
    published to ``publisher`` from the event loop.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        publisher: ChangePublisher | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._publisher = publisher

    async def insert_message(self, match_id: str, payload: MessageCreate) -> MessageRead:
        message_service.validate_content(payload.content)
        message = await self._run(message_service.insert_message, match_id, payload)
        self._publish(ChangeType.INSERT, message)
        return message

    async def fetch_messages(
        self,
        match_id: str,
        *,
        viewer_id: str,
        limit: int,
        offset: int = 0,
    ) -> list[MessageRead]:
        return await self._run(
            message_service.list_messages,
            match_id,
            viewer_id=viewer_id,
            limit=limit,
            offset=offset,
        )

    async def fetch_recent_messages(self, match_id: str, *, viewer_id: str, limit: int) -> list[MessageRead]:
        return await self._run(
            message_service.list_recent_messages,
            match_id,
            viewer_id=viewer_id,
            limit=limit,
        )

    async def mark_read(self, match_id: str, viewer_id: str) -> list[MessageRead]:
        stamped = await self._run(message_service.mark_messages_read, match_id, viewer_id)
        for message in stamped:
            self._publish(ChangeType.UPDATE, message)
        return stamped

    async def soft_delete(self, message_id: int, viewer_id: str) -> MessageRead:
        message = await self._run(message_service.soft_delete_message, message_id, viewer_id)
        self._publish(ChangeType.UPDATE, message)
        return message

    async def _run(self, func: Callable[..., T], *args, **kwargs) -> T:
        return await asyncio.to_thread(self._in_session, func, *args, **kwargs)

    def _in_session(self, func: Callable[..., T], *args, **kwargs) -> T:
        db = self._session_factory()
        try:
            return func(db, *args, **kwargs)
        finally:
            db.close()

    def _publish(self, change_type: ChangeType, message: MessageRead) -> None:
        if self._publisher is None:
            return
        try:
            self._publisher.publish(ChangeEvent(type=change_type, match_id=message.match_id, message=message))
        except Exception:
            logger.exception(
                "store.publish_failed event=%s match_id=%s message_id=%s",
                change_type.value,
                message.match_id,
                message.id,
            )
