"""Tests for the polling fallback loop."""

from __future__ import annotations

import asyncio
import unittest

from fakes import MemoryMessageStore

from matchchat.schemas.message import MessageRead
from matchchat.services.errors import PollFetchError
from matchchat.services.polling import PollingFallback

MATCH = "match-poll"


class PollingFallbackTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.store = MemoryMessageStore()
        self.delivered: list[tuple[int, str]] = []
        self.seen: set[int] = set()

    def _deliver(self, message: MessageRead, source: str) -> bool:
        if message.id in self.seen:
            return False
        self.seen.add(message.id)
        self.delivered.append((message.id, source))
        return True

    def _poller(self, interval: float = 3600, page_size: int = 20) -> PollingFallback:
        async def fetch() -> list[MessageRead]:
            return await self.store.fetch_recent_messages(MATCH, viewer_id="eng-1", limit=page_size)

        return PollingFallback(MATCH, fetch, self._deliver, interval_seconds=interval)

    async def test_failed_tick_is_swallowed_and_next_tick_delivers(self) -> None:
        poller = self._poller()
        self.store.recent_fetch_failures = 1

        first = await poller.tick()
        message = self.store.add(MATCH, "org-1", "Sent while the fetch was failing")
        second = await poller.tick()

        self.assertEqual(first, 0)
        self.assertEqual(second, 1)
        self.assertEqual(poller.failure_count, 1)
        self.assertIsInstance(poller.last_error, PollFetchError)
        self.assertEqual(poller.last_error.tick, 1)
        self.assertEqual(self.delivered, [(message.id, "poll")])

    async def test_background_loop_survives_a_failing_tick(self) -> None:
        poller = self._poller(interval=0.01)
        self.store.recent_fetch_failures = 2
        message = self.store.add(MATCH, "org-1", "Eventually delivered")

        poller.start()
        for _ in range(200):
            if self.delivered:
                break
            await asyncio.sleep(0.01)
        poller.cancel()

        self.assertEqual(self.delivered, [(message.id, "poll")])
        self.assertGreaterEqual(poller.tick_count, 3)
        self.assertEqual(poller.failure_count, 2)

    async def test_page_is_bounded_and_ordered_oldest_first(self) -> None:
        poller = self._poller(page_size=3)
        added = [self.store.add(MATCH, "org-1", f"message {n}") for n in range(5)]

        await poller.tick()

        self.assertEqual([mid for mid, _ in self.delivered], [m.id for m in added[-3:]])

    async def test_start_twice_keeps_one_task(self) -> None:
        poller = self._poller()
        poller.start()
        task = poller._task
        poller.start()

        self.assertIs(poller._task, task)
        poller.cancel()
        for _ in range(3):
            await asyncio.sleep(0)
        self.assertTrue(task.cancelled() or task.done())
        self.assertFalse(poller.running)

    async def test_cancelled_poller_does_not_restart_or_deliver(self) -> None:
        poller = self._poller()
        poller.cancel()
        poller.start()
        self.store.add(MATCH, "org-1", "Too late")

        await poller.tick()

        self.assertFalse(poller.running)
        self.assertEqual(self.delivered, [])


if __name__ == "__main__":
    unittest.main()
