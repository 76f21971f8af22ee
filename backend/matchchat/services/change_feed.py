"""Row-level change notifications for the message store."""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from matchchat.schemas.message import MessageRead
from matchchat.services.errors import TransientChannelError

logger = logging.getLogger(__name__)


class ChangeType(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class ChannelStatus(str, Enum):
    SUBSCRIBING = "SUBSCRIBING"
    SUBSCRIBED = "SUBSCRIBED"
    CHANNEL_ERROR = "CHANNEL_ERROR"
    TIMED_OUT = "TIMED_OUT"
    CLOSED = "CLOSED"


FAILURE_STATUSES = frozenset({ChannelStatus.CHANNEL_ERROR, ChannelStatus.TIMED_OUT})


@dataclass(frozen=True, slots=True)
class ChangeEvent:
    """One committed change to a message row."""

    type: ChangeType
    match_id: str
    message: MessageRead


StatusCallback = Callable[[ChannelStatus, str | None], None]
Unsubscribe = Callable[[], None]


@dataclass(slots=True)
class FeedHandlers:
    """Callbacks a subscriber registers for one conversation."""

    on_insert: Callable[[MessageRead], None]
    on_update: Callable[[MessageRead], None]
    on_delete: Callable[[MessageRead], None]
    on_status: StatusCallback | None = None


class ChangeFeed(Protocol):
    """Push channel scoped to one conversation per subscription."""

    async def subscribe(self, match_id: str, handlers: FeedHandlers) -> Unsubscribe:
        """Register handlers and return a synchronous unsubscribe callable."""


class ChangePublisher(Protocol):
    def publish(self, event: ChangeEvent) -> None:
        """Fan one committed change out to subscribers."""


class LocalChangeFeed:
    """In-process change feed.

    Events are dispatched on the running loop after ``publish`` returns, and
    only to subscribers of the event's conversation. A dispatch scheduled
    before an unsubscribe is dropped.
    """

    def __init__(self) -> None:
        self._subscribers: dict[str, dict[int, FeedHandlers]] = {}
        self._tokens = itertools.count(1)

    async def subscribe(self, match_id: str, handlers: FeedHandlers) -> Unsubscribe:
        token = next(self._tokens)
        self._subscribers.setdefault(match_id, {})[token] = handlers
        logger.debug("feed.subscribe match_id=%s token=%d", match_id, token)
        _report_status(handlers, ChannelStatus.SUBSCRIBING, None)
        self._schedule(lambda: self._deliver_status(match_id, token, ChannelStatus.SUBSCRIBED))

        def unsubscribe() -> None:
            bucket = self._subscribers.get(match_id)
            if bucket is None or bucket.pop(token, None) is None:
                return
            if not bucket:
                del self._subscribers[match_id]
            logger.debug("feed.unsubscribe match_id=%s token=%d", match_id, token)

        return unsubscribe

    def publish(self, event: ChangeEvent) -> None:
        for token in list(self._subscribers.get(event.match_id, {})):
            self._schedule(lambda token=token: self._dispatch(token, event))

    def subscriber_count(self, match_id: str) -> int:
        return len(self._subscribers.get(match_id, {}))

    def close(self) -> None:
        """Report ``CLOSED`` to every subscriber and drop them all."""

        subscribers, self._subscribers = self._subscribers, {}
        for bucket in subscribers.values():
            for handlers in bucket.values():
                _report_status(handlers, ChannelStatus.CLOSED, None)

    def _schedule(self, callback: Callable[[], None]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            callback()
            return
        loop.call_soon(callback)

    def _deliver_status(self, match_id: str, token: int, status: ChannelStatus) -> None:
        handlers = self._subscribers.get(match_id, {}).get(token)
        if handlers is not None:
            _report_status(handlers, status, None)

    def _dispatch(self, token: int, event: ChangeEvent) -> None:
        handlers = self._subscribers.get(event.match_id, {}).get(token)
        if handlers is None:
            return
        callback = {
            ChangeType.INSERT: handlers.on_insert,
            ChangeType.UPDATE: handlers.on_update,
            ChangeType.DELETE: handlers.on_delete,
        }[event.type]
        try:
            callback(event.message)
        except Exception:
            logger.exception(
                "feed.handler_failed match_id=%s event=%s message_id=%s",
                event.match_id,
                event.type.value,
                event.message.id,
            )


def _report_status(handlers: FeedHandlers, status: ChannelStatus, detail: str | None) -> None:
    if handlers.on_status is None:
        return
    try:
        handlers.on_status(status, detail)
    except Exception:
        logger.exception("feed.status_handler_failed status=%s", status.value)


class ChangeFeedAdapter:
    """Translates one conversation's change events into delivery calls.

    ``observe`` receives inserts, ``on_update`` receives visible metadata
    changes and ``on_remove`` receives ids that must leave the view, either
    because the row was deleted or because the viewer soft-deleted it.
    """

    def __init__(
        self,
        feed: ChangeFeed,
        match_id: str,
        viewer_id: str,
        *,
        observe: Callable[[MessageRead, str], bool],
        on_update: Callable[[MessageRead], None],
        on_remove: Callable[[int], None],
        on_status: StatusCallback | None = None,
    ) -> None:
        self.feed = feed
        self.match_id = match_id
        self.viewer_id = viewer_id
        self.status: ChannelStatus | None = None
        self.last_error: TransientChannelError | None = None
        self._observe = observe
        self._on_update = on_update
        self._on_remove = on_remove
        self._on_status = on_status
        self._unsubscribe: Unsubscribe | None = None
        self._stopped = False

    async def start(self) -> None:
        unsubscribe = await self.feed.subscribe(
            self.match_id,
            FeedHandlers(
                on_insert=self.handle_insert,
                on_update=self.handle_update,
                on_delete=self.handle_delete,
                on_status=self.handle_status,
            ),
        )
        if self._stopped:
            unsubscribe()
            return
        self._unsubscribe = unsubscribe

    def stop(self) -> None:
        self._stopped = True
        unsubscribe, self._unsubscribe = self._unsubscribe, None
        if unsubscribe is not None:
            unsubscribe()

    @property
    def healthy(self) -> bool:
        return self.status is ChannelStatus.SUBSCRIBED

    def handle_insert(self, message: MessageRead) -> None:
        if not self._accepts(message) or not message.is_visible_to(self.viewer_id):
            return
        self._observe(message, "feed")

    def handle_update(self, message: MessageRead) -> None:
        if not self._accepts(message):
            return
        if not message.is_visible_to(self.viewer_id):
            self._on_remove(message.id)
        else:
            self._on_update(message)

    def handle_delete(self, message: MessageRead) -> None:
        if not self._accepts(message):
            return
        self._on_remove(message.id)

    def handle_status(self, status: ChannelStatus, detail: str | None = None) -> None:
        if self._stopped:
            return
        self.status = status
        if status in FAILURE_STATUSES:
            self.last_error = TransientChannelError(self.match_id, status.value, detail)
            logger.warning(
                "delivery.feed_degraded match_id=%s status=%s detail=%s",
                self.match_id,
                status.value,
                detail,
            )
        else:
            logger.info("delivery.feed_status match_id=%s status=%s", self.match_id, status.value)
        if self._on_status is not None:
            self._on_status(status, detail)

    def _accepts(self, message: MessageRead) -> bool:
        if self._stopped:
            return False
        if message.match_id != self.match_id:
            logger.warning(
                "delivery.feed_foreign_event match_id=%s event_match_id=%s message_id=%s",
                self.match_id,
                message.match_id,
                message.id,
            )
            return False
        return True
