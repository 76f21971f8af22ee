"""FastAPI dependencies for store access."""

from fastapi import Request

from matchchat.services.message_store import SqlMessageStore


def get_store(request: Request) -> SqlMessageStore:
    """Return the application's message store."""

    return request.app.state.store
