"""Per-conversation delivery deduplication.

A conversation's messages reach the view through two independent paths, the
change feed and the polling fallback. ``DeliveryDeduplicator`` owns one
``ConversationDelivery`` per open conversation, and its seen-set makes sure
each store-assigned id reaches the registered callback once, whichever path
reports it first.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from functools import partial
from typing import TYPE_CHECKING

from matchchat.config import get_settings
from matchchat.schemas.message import MessageRead
from matchchat.services.change_feed import ChangeFeed, ChangeFeedAdapter, ChannelStatus, StatusCallback
from matchchat.services.errors import TransientChannelError
from matchchat.services.polling import PollingFallback

if TYPE_CHECKING:
    from matchchat.services.message_store import MessageStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class DeliveryCallbacks:
    """View-side receivers for one conversation."""

    on_message: Callable[[MessageRead], None]
    on_update: Callable[[MessageRead], None] | None = None
    on_remove: Callable[[int], None] | None = None
    on_status: StatusCallback | None = None


class ConversationDelivery:
    """Seen-set, poller and feed subscription of one open conversation."""

    def __init__(self, match_id: str, callbacks: DeliveryCallbacks) -> None:
        self.match_id = match_id
        self.callbacks = callbacks
        self.seen_ids: set[int] = set()
        self.poller: PollingFallback | None = None
        self.adapter: ChangeFeedAdapter | None = None
        self.delivered_count = 0
        self.duplicate_count = 0
        self.closed = False

    def mark_seen(self, message_ids: Iterable[int]) -> None:
        self.seen_ids.update(message_ids)

    def observe(self, message: MessageRead, source: str) -> bool:
        """Forward a message the first time its id is seen; drop repeats."""

        if self.closed:
            return False
        if message.id in self.seen_ids:
            self.duplicate_count += 1
            logger.debug(
                "delivery.duplicate_dropped match_id=%s message_id=%s source=%s",
                self.match_id,
                message.id,
                source,
            )
            return False
        self.seen_ids.add(message.id)
        self.delivered_count += 1
        self.callbacks.on_message(message)
        return True

    def update(self, message: MessageRead) -> None:
        if not self.closed and self.callbacks.on_update is not None:
            self.callbacks.on_update(message)

    def remove(self, message_id: int) -> None:
        # The id stays in the seen-set so a later poll cannot bring it back.
        if self.closed:
            return
        self.seen_ids.add(message_id)
        if self.callbacks.on_remove is not None:
            self.callbacks.on_remove(message_id)

    def report_status(self, status: ChannelStatus, detail: str | None) -> None:
        if not self.closed and self.callbacks.on_status is not None:
            self.callbacks.on_status(status, detail)

    def close(self) -> None:
        self.closed = True
        if self.poller is not None:
            self.poller.cancel()
        if self.adapter is not None:
            self.adapter.stop()
        self.seen_ids.clear()


class DeliveryDeduplicator:
    """Opens, feeds and closes delivery state for one viewer's conversations."""

    def __init__(
        self,
        store: MessageStore,
        feed: ChangeFeed,
        *,
        viewer_id: str,
        poll_interval_seconds: float | None = None,
        poll_page_size: int | None = None,
    ) -> None:
        settings = get_settings()
        self.store = store
        self.feed = feed
        self.viewer_id = viewer_id
        self.poll_interval_seconds = (
            settings.poll_interval_seconds if poll_interval_seconds is None else poll_interval_seconds
        )
        self.poll_page_size = settings.poll_page_size if poll_page_size is None else poll_page_size
        self._deliveries: dict[str, ConversationDelivery] = {}

    def is_open(self, match_id: str) -> bool:
        return match_id in self._deliveries

    def get(self, match_id: str) -> ConversationDelivery | None:
        return self._deliveries.get(match_id)

    async def open(
        self,
        match_id: str,
        callbacks: DeliveryCallbacks,
        *,
        seen_ids: Iterable[int] = (),
    ) -> ConversationDelivery:
        """Start polling and the feed subscription for a conversation.

        Returns the existing delivery when the conversation is already open,
        so a second call never starts a second poller.
        """

        existing = self._deliveries.get(match_id)
        if existing is not None:
            return existing

        delivery = ConversationDelivery(match_id, callbacks)
        delivery.mark_seen(seen_ids)
        self._deliveries[match_id] = delivery

        delivery.poller = PollingFallback(
            match_id,
            partial(
                self.store.fetch_recent_messages,
                match_id,
                viewer_id=self.viewer_id,
                limit=self.poll_page_size,
            ),
            partial(self.observe, match_id),
            interval_seconds=self.poll_interval_seconds,
        )
        delivery.adapter = ChangeFeedAdapter(
            self.feed,
            match_id,
            self.viewer_id,
            observe=partial(self.observe, match_id),
            on_update=partial(self._update, match_id),
            on_remove=partial(self._remove, match_id),
            on_status=partial(self._report_status, match_id),
        )
        delivery.poller.start()
        try:
            await delivery.adapter.start()
        except Exception as exc:
            delivery.adapter.last_error = TransientChannelError(match_id, ChannelStatus.CHANNEL_ERROR.value, str(exc))
            logger.warning(
                "delivery.feed_subscribe_failed match_id=%s error=%s; polling continues",
                match_id,
                exc,
            )
        if delivery.closed:
            delivery.adapter.stop()
        logger.info(
            "delivery.opened match_id=%s viewer_id=%s seen=%d interval_s=%.2f",
            match_id,
            self.viewer_id,
            len(delivery.seen_ids),
            self.poll_interval_seconds,
        )
        return delivery

    def observe(self, match_id: str, message: MessageRead, source: str) -> bool:
        """Surface a message once per open conversation; late calls are ignored."""

        delivery = self._deliveries.get(match_id)
        if delivery is None:
            return False
        return delivery.observe(message, source)

    def close(self, match_id: str) -> bool:
        """Cancel polling, unsubscribe and drop the seen-set. Safe to repeat."""

        delivery = self._deliveries.pop(match_id, None)
        if delivery is None:
            return False
        delivery.close()
        logger.info(
            "delivery.closed match_id=%s delivered=%d duplicates=%d",
            match_id,
            delivery.delivered_count,
            delivery.duplicate_count,
        )
        return True

    def close_all(self) -> None:
        for match_id in list(self._deliveries):
            self.close(match_id)

    def _update(self, match_id: str, message: MessageRead) -> None:
        delivery = self._deliveries.get(match_id)
        if delivery is not None:
            delivery.update(message)

    def _remove(self, match_id: str, message_id: int) -> None:
        delivery = self._deliveries.get(match_id)
        if delivery is not None:
            delivery.remove(message_id)

    def _report_status(self, match_id: str, status: ChannelStatus, detail: str | None) -> None:
        delivery = self._deliveries.get(match_id)
        if delivery is not None:
            delivery.report_status(status, detail)
