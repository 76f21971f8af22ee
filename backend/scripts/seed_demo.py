"""Seed a demo match conversation between an organization and an engineer.

Usage (from repository root):
    python backend/scripts/seed_demo.py

Usage (from backend directory):
    python scripts/seed_demo.py
    # or
    python -m scripts.seed_demo
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from sqlalchemy import delete, select

# Make `matchchat` imports work whether the script is run from repo root or backend/.
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from matchchat.db.session import SessionLocal
from matchchat.models.message import Message, MessageDeletion
from matchchat.schemas.message import MessageCreate
from matchchat.services.messages import insert_message, mark_messages_read

DEFAULT_MATCH_ID = "match-demo-001"
ORGANIZATION_ID = "org-demo"
ENGINEER_ID = "eng-demo"


def build_demo_messages() -> list[MessageCreate]:
    """Return a deterministic short hiring conversation."""

    return [
        MessageCreate(sender_id="system", content="You have a new match.", is_system_message=True),
        MessageCreate(
            sender_id=ORGANIZATION_ID,
            sender_role="organization",
            content="Hi! We liked your profile for the backend role.",
        ),
        MessageCreate(sender_id=ENGINEER_ID, sender_role="engineer", content="Thanks, happy to chat."),
        MessageCreate(
            sender_id=ORGANIZATION_ID,
            sender_role="organization",
            content="Are you available Tuesday?",
        ),
    ]


def reset_conversation(db, match_id: str) -> None:
    """Remove existing records for the demo conversation."""

    message_ids = select(Message.id).where(Message.match_id == match_id)
    db.execute(delete(MessageDeletion).where(MessageDeletion.message_id.in_(message_ids)))
    db.execute(delete(Message).where(Message.match_id == match_id))
    db.commit()


def parse_args() -> argparse.Namespace:
    """Parse script CLI arguments."""

    parser = argparse.ArgumentParser(description="Seed a demo match conversation.")
    parser.add_argument(
        "--match-id",
        default=DEFAULT_MATCH_ID,
        help=f"Conversation to seed (default: {DEFAULT_MATCH_ID})",
    )
    parser.add_argument(
        "--no-reset",
        action="store_true",
        help="Do not delete existing messages for the conversation before seeding.",
    )
    return parser.parse_args()


def main() -> None:
    """Seed demo data and print a short summary."""

    args = parse_args()
    match_id = args.match_id

    with SessionLocal() as db:
        if not args.no_reset:
            reset_conversation(db, match_id)
        *history, latest = build_demo_messages()
        created = [insert_message(db, match_id, payload) for payload in history]
        # The engineer has seen everything except the latest question.
        read = mark_messages_read(db, match_id, ENGINEER_ID)
        created.append(insert_message(db, match_id, latest))

    print("Seed complete")
    print(f"match_id={match_id}")
    print(f"messages_created={len(created)}")
    print(f"messages_marked_read={len(read)}")
    print()
    print("Inspect:")
    print(f"  GET /conversations/{match_id}/messages?viewer_id={ENGINEER_ID}")
    print(f"  WS  /ws/conversations/{match_id}?viewer_id={ENGINEER_ID}&role=engineer")


if __name__ == "__main__":
    main()
