"""FastAPI application entrypoint."""

from collections.abc import Callable
from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.orm import Session

from matchchat.config import get_settings
from matchchat.routers import messages, realtime
from matchchat.services.change_feed import LocalChangeFeed
from matchchat.services.message_store import SqlMessageStore

logger = logging.getLogger(__name__)


def _warm_backend_state(session_factory: Callable[[], Session]) -> None:
    """Prime the DB connection at process start."""

    try:
        with session_factory() as db:
            db.execute(text("SELECT 1"))
    except Exception:
        logger.exception("Backend warm-up failed; continuing without startup pre-warm.")


def create_app(
    session_factory: Callable[[], Session] | None = None,
    feed: LocalChangeFeed | None = None,
) -> FastAPI:
    """Build the API with its own store and change feed."""

    settings = get_settings()
    if session_factory is None:
        from matchchat.db.session import SessionLocal

        session_factory = SessionLocal
    feed = feed or LocalChangeFeed()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logging.getLogger("matchchat").setLevel(settings.log_level.upper())
        _warm_backend_state(session_factory)
        yield
        app.state.feed.close()

    app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=lifespan)
    app.state.feed = feed
    app.state.store = SqlMessageStore(session_factory, publisher=feed)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(messages.router, tags=["messages"])
    app.include_router(realtime.router, tags=["realtime"])

    @app.get("/health")
    def health() -> dict[str, str]:
        """Simple health check endpoint."""

        return {"status": "ok"}

    return app


app = create_app()
