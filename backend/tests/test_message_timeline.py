"""Tests for the rendered timeline and optimistic echo reconciliation."""

from __future__ import annotations

import unittest
from datetime import datetime, timedelta, timezone

from matchchat.schemas.message import MessageRead
from matchchat.services.timeline import MessageTimeline, is_temporary_id

MATCH = "match-tl"
BASE = datetime(2026, 10, 18, 9, 0, tzinfo=timezone.utc)


def _message(message_id: int, sender_id: str, content: str, *, seconds: int = 0, **extra) -> MessageRead:
    return MessageRead(
        id=message_id,
        match_id=MATCH,
        sender_id=sender_id,
        content=content,
        created_at=BASE + timedelta(seconds=seconds),
        **extra,
    )


class MessageTimelineTests(unittest.TestCase):
    def setUp(self) -> None:
        self.timeline = MessageTimeline("eng-1", match_window=timedelta(seconds=30))

    def test_pending_echo_is_replaced_by_confirmed_message(self) -> None:
        echo = self.timeline.add_pending(MATCH, "  hello  ", sender_role="engineer", now=BASE)
        self.assertTrue(is_temporary_id(echo.id))
        self.assertEqual([e.id for e in self.timeline.entries], [echo.id])

        self.timeline.apply_delivered(_message(7, "eng-1", "hello", seconds=1, sender_role="engineer"))

        entries = self.timeline.entries
        self.assertEqual(len(entries), 1)
        self.assertEqual(entries[0].id, 7)
        self.assertFalse(entries[0].pending)
        self.assertEqual(self.timeline.pending, [])

    def test_echo_outside_window_is_left_in_place(self) -> None:
        self.timeline.add_pending(MATCH, "hello", now=BASE)

        self.timeline.apply_delivered(_message(8, "eng-1", "hello", seconds=120))

        self.assertEqual(len(self.timeline), 2)
        self.assertEqual(len(self.timeline.pending), 1)

    def test_echo_is_not_matched_by_other_sender_or_content(self) -> None:
        self.timeline.add_pending(MATCH, "hello", now=BASE)

        self.timeline.apply_delivered(_message(9, "org-1", "hello", seconds=1))
        self.timeline.apply_delivered(_message(10, "eng-1", "hello there", seconds=2))

        self.assertEqual(len(self.timeline.pending), 1)
        self.assertEqual(self.timeline.message_ids(), [9, 10])

    def test_identical_sends_resolve_one_echo_each(self) -> None:
        self.timeline.add_pending(MATCH, "ok", now=BASE)
        self.timeline.add_pending(MATCH, "ok", now=BASE + timedelta(seconds=1))

        self.timeline.apply_delivered(_message(11, "eng-1", "ok", seconds=1))
        self.assertEqual(len(self.timeline.pending), 1)
        self.timeline.apply_delivered(_message(12, "eng-1", "ok", seconds=2))

        self.assertEqual(self.timeline.pending, [])
        self.assertEqual(self.timeline.message_ids(), [11, 12])

    def test_rollback_removes_only_the_echo(self) -> None:
        self.timeline.load([_message(1, "org-1", "Hi")])
        echo = self.timeline.add_pending(MATCH, "draft", now=BASE)

        rolled_back = self.timeline.rollback(echo.id)

        self.assertIs(rolled_back, echo)
        self.assertEqual(self.timeline.message_ids(), [1])
        self.assertIsNone(self.timeline.rollback(echo.id))

    def test_out_of_order_arrivals_render_in_created_at_order(self) -> None:
        t1 = _message(1, "org-1", "first", seconds=1)
        t2 = _message(2, "eng-1", "second", seconds=2)
        t3 = _message(3, "org-1", "third", seconds=3)

        for message in (t1, t3, t2):
            self.timeline.apply_delivered(message)

        self.assertEqual(self.timeline.message_ids(), [1, 2, 3])

    def test_same_timestamp_is_ordered_by_store_id(self) -> None:
        self.timeline.apply_delivered(_message(5, "org-1", "b"))
        self.timeline.apply_delivered(_message(4, "org-1", "a"))

        self.assertEqual(self.timeline.message_ids(), [4, 5])

    def test_repeat_delivery_merges_instead_of_duplicating(self) -> None:
        self.timeline.apply_delivered(_message(1, "org-1", "Hello"))
        read_at = BASE + timedelta(minutes=1)

        self.timeline.apply_delivered(_message(1, "org-1", "Hello", read_at=read_at))

        self.assertEqual(len(self.timeline), 1)
        self.assertEqual(self.timeline.entries[0].read_at, read_at)

    def test_update_hidden_for_viewer_removes_entry(self) -> None:
        self.timeline.load([_message(1, "org-1", "Hello"), _message(2, "org-1", "Bye", seconds=1)])

        changed = self.timeline.apply_update(_message(1, "org-1", "Hello", deleted_by=["eng-1"]))

        self.assertTrue(changed)
        self.assertEqual(self.timeline.message_ids(), [2])

    def test_update_for_unknown_message_is_ignored(self) -> None:
        self.assertFalse(self.timeline.apply_update(_message(99, "org-1", "?")))
        self.assertEqual(len(self.timeline), 0)

    def test_load_skips_messages_hidden_for_viewer_and_keeps_pending(self) -> None:
        echo = self.timeline.add_pending(MATCH, "queued", now=BASE)

        self.timeline.load(
            [
                _message(1, "org-1", "visible"),
                _message(2, "org-1", "hidden", seconds=1, deleted_by=["eng-1"]),
            ]
        )

        self.assertEqual(self.timeline.message_ids(), [1])
        self.assertEqual(self.timeline.pending[0].id, echo.id)

    def test_unread_count_covers_other_party_only(self) -> None:
        self.timeline.load(
            [
                _message(1, "org-1", "unread"),
                _message(2, "org-1", "read", seconds=1, read_at=BASE),
                _message(3, "eng-1", "mine", seconds=2),
            ]
        )

        self.assertEqual(self.timeline.unread_count(), 1)


if __name__ == "__main__":
    unittest.main()
