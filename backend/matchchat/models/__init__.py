"""ORM models package exports."""

from matchchat.models.message import Message, MessageDeletion

__all__ = ["Message", "MessageDeletion"]
