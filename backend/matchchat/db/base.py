"""SQLAlchemy metadata registry import for Alembic."""

from matchchat.models import Message, MessageDeletion
from matchchat.models.base import Base

__all__ = ["Base", "Message", "MessageDeletion"]
