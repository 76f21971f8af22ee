"""Timer-driven re-fetch that backs up the change feed."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from time import perf_counter

from matchchat.schemas.message import MessageRead
from matchchat.services.errors import PollFetchError

logger = logging.getLogger(__name__)

FetchPage = Callable[[], Awaitable[list[MessageRead]]]
Deliver = Callable[[MessageRead, str], bool]


class PollingFallback:
    """Periodically fetch the latest page of one conversation and deliver it.

    One task per instance; ``start`` is a no-op while that task is alive and
    ``cancel`` stops it for good. A failed fetch is logged and the loop
    carries on with the next tick.
    """

    def __init__(
        self,
        match_id: str,
        fetch: FetchPage,
        deliver: Deliver,
        *,
        interval_seconds: float,
    ) -> None:
        self.match_id = match_id
        self.interval_seconds = interval_seconds
        self.tick_count = 0
        self.failure_count = 0
        self.last_error: PollFetchError | None = None
        self._fetch = fetch
        self._deliver = deliver
        self._task: asyncio.Task[None] | None = None
        self._cancelled = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self._cancelled or self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run(), name=f"poll:{self.match_id}")

    def cancel(self) -> None:
        self._cancelled = True
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()

    async def _run(self) -> None:
        while not self._cancelled:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.tick()
            except Exception:
                logger.exception("delivery.poll_tick_crashed match_id=%s tick=%d", self.match_id, self.tick_count)

    async def tick(self) -> int:
        """Run one fetch-and-deliver pass; return how many messages were new."""

        self.tick_count += 1
        tick = self.tick_count
        started = perf_counter()
        try:
            page = await self._fetch()
        except Exception as exc:
            self.failure_count += 1
            self.last_error = PollFetchError(self.match_id, tick)
            self.last_error.__cause__ = exc
            logger.exception(
                "delivery.poll_failed match_id=%s tick=%d elapsed_ms=%.2f",
                self.match_id,
                tick,
                (perf_counter() - started) * 1000.0,
            )
            return 0

        if self._cancelled:
            return 0
        delivered = 0
        for message in page:
            if self._deliver(message, "poll"):
                delivered += 1
        if delivered:
            logger.info(
                "delivery.poll_recovered match_id=%s tick=%d delivered=%d",
                self.match_id,
                tick,
                delivered,
            )
        return delivered
