"""Message persistence services."""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import exists, insert, inspect, select, update
from sqlalchemy.engine import Row
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import Session

from matchchat.models.message import Message, MessageDeletion
from matchchat.schemas.message import MessageCreate, MessageRead
from matchchat.services.errors import MessageNotFoundError, ValidationError
from matchchat.services.schema_fallback import call_with_schema_fallback, translate_store_error

FULL_COLUMNS = (
    Message.id,
    Message.match_id,
    Message.sender_id,
    Message.sender_role,
    Message.content,
    Message.created_at,
    Message.read_at,
    Message.is_system_message,
)
MINIMAL_COLUMNS = (
    Message.id,
    Message.match_id,
    Message.sender_id,
    Message.content,
    Message.created_at,
)


def validate_content(content: str | None) -> str:
    """Return trimmed content or raise ``ValidationError`` when it is blank."""

    trimmed = (content or "").strip()
    if not trimmed:
        raise ValidationError("Message content cannot be empty")
    return trimmed


@contextmanager
def _store_errors(db: Session) -> Iterator[None]:
    try:
        yield
    except DBAPIError as exc:
        db.rollback()
        raise translate_store_error(exc) from exc


def insert_message(db: Session, match_id: str, payload: MessageCreate) -> MessageRead:
    """Persist one message, dropping optional columns if the store lacks them."""

    content = validate_content(payload.content)
    base_values = {
        "match_id": match_id,
        "sender_id": payload.sender_id,
        "content": content,
        "created_at": datetime.now(timezone.utc),
    }
    full_values = {
        **base_values,
        "sender_role": payload.sender_role,
        "is_system_message": payload.is_system_message,
    }
    return call_with_schema_fallback(
        lambda: _insert(db, full_values, FULL_COLUMNS),
        lambda: _insert(db, base_values, MINIMAL_COLUMNS),
        operation="insert_message",
    )


def _insert(db: Session, values: dict[str, object], columns: tuple) -> MessageRead:
    with _store_errors(db):
        result = db.execute(insert(Message.__table__).values(**values))
        message_id = result.inserted_primary_key[0]
        db.commit()
        row = db.execute(select(*columns).where(Message.id == message_id)).one()
    return _to_read(row)


def list_messages(
    db: Session,
    match_id: str,
    *,
    viewer_id: str,
    limit: int = 50,
    offset: int = 0,
) -> list[MessageRead]:
    """Return one page of visible messages, ordered oldest to newest.

    Pages are counted back from the newest message: ``offset=0`` is the
    latest ``limit`` messages and ``offset=limit`` the page before them.
    """

    page = call_with_schema_fallback(
        lambda: _query_page(db, match_id, viewer_id, FULL_COLUMNS, limit=limit, offset=offset),
        lambda: _query_page(db, match_id, viewer_id, MINIMAL_COLUMNS, limit=limit, offset=offset),
        operation="list_messages",
    )
    page.reverse()
    return page


def list_recent_messages(db: Session, match_id: str, *, viewer_id: str, limit: int = 20) -> list[MessageRead]:
    """Return the newest page of visible messages, ordered oldest to newest."""

    return list_messages(db, match_id, viewer_id=viewer_id, limit=limit, offset=0)


def _ordering(newest_first: bool) -> tuple:
    if newest_first:
        return (Message.created_at.desc(), Message.id.desc())
    return (Message.created_at.asc(), Message.id.asc())


def _deletions_available(db: Session, columns: tuple) -> bool:
    # The full tier assumes the table; the minimal tier checks for it.
    if columns is FULL_COLUMNS:
        return True
    return inspect(db.get_bind()).has_table(MessageDeletion.__tablename__)


def _query_page(
    db: Session,
    match_id: str,
    viewer_id: str,
    columns: tuple,
    *,
    limit: int,
    offset: int,
) -> list[MessageRead]:
    """Newest-first page of rows the viewer has not soft-deleted."""

    with _store_errors(db):
        track_deletions = _deletions_available(db, columns)
        stmt = select(*columns).where(Message.match_id == match_id)
        if track_deletions:
            hidden = exists().where(
                MessageDeletion.message_id == Message.id,
                MessageDeletion.viewer_id == viewer_id,
            )
            stmt = stmt.where(~hidden)
        stmt = stmt.order_by(*_ordering(True)).offset(offset).limit(limit)
        rows = db.execute(stmt).all()
        deleted_by = _deleted_by_map(db, [row.id for row in rows]) if track_deletions else {}
    return [_to_read(row, deleted_by.get(row.id)) for row in rows]


def get_message(db: Session, message_id: int) -> MessageRead | None:
    """Return one message with its soft-delete markers."""

    def _fetch(columns: tuple) -> MessageRead | None:
        with _store_errors(db):
            row = db.execute(select(*columns).where(Message.id == message_id)).first()
            if row is None:
                return None
            deleted_by = _deleted_by_map(db, [row.id]) if _deletions_available(db, columns) else {}
        return _to_read(row, deleted_by.get(row.id))

    def _full() -> MessageRead | None:
        return _fetch(FULL_COLUMNS)

    def _minimal() -> MessageRead | None:
        return _fetch(MINIMAL_COLUMNS)

    return call_with_schema_fallback(_full, _minimal, operation="get_message")


def mark_messages_read(db: Session, match_id: str, viewer_id: str) -> list[MessageRead]:
    """Stamp ``read_at`` on every unread message the other party sent.

    Returns the stamped messages; calling it again is a no-op. A store
    without read receipts has nothing to stamp.
    """

    def _full() -> list[MessageRead]:
        stmt = select(Message.id).where(
            Message.match_id == match_id,
            Message.sender_id != viewer_id,
            Message.read_at.is_(None),
        )
        with _store_errors(db):
            unread_ids = list(db.scalars(stmt).all())
            if not unread_ids:
                return []
            db.execute(
                update(Message)
                .where(Message.id.in_(unread_ids))
                .values(read_at=datetime.now(timezone.utc))
                .execution_options(synchronize_session=False)
            )
            db.commit()
            rows = db.execute(
                select(*FULL_COLUMNS).where(Message.id.in_(unread_ids)).order_by(*_ordering(False))
            ).all()
            deleted_by = _deleted_by_map(db, unread_ids)
        return [_to_read(row, deleted_by.get(row.id)) for row in rows]

    return call_with_schema_fallback(_full, lambda: [], operation="mark_messages_read")


def soft_delete_message(db: Session, message_id: int, viewer_id: str) -> MessageRead:
    """Hide one message for one viewer; repeated calls leave it hidden."""

    with _store_errors(db):
        if db.scalar(select(Message.id).where(Message.id == message_id)) is None:
            raise MessageNotFoundError(message_id)
        already_hidden = db.scalar(
            select(MessageDeletion.id).where(
                MessageDeletion.message_id == message_id,
                MessageDeletion.viewer_id == viewer_id,
            )
        )
        if already_hidden is None:
            db.add(MessageDeletion(message_id=message_id, viewer_id=viewer_id))
            try:
                db.commit()
            except IntegrityError:
                # Concurrent delete by the same viewer already landed.
                db.rollback()

    message = get_message(db, message_id)
    if message is None:
        raise MessageNotFoundError(message_id)
    return message


def _deleted_by_map(db: Session, message_ids: Iterable[int]) -> dict[int, list[str]]:
    ids = list(message_ids)
    if not ids:
        return {}
    stmt = (
        select(MessageDeletion.message_id, MessageDeletion.viewer_id)
        .where(MessageDeletion.message_id.in_(ids))
        .order_by(MessageDeletion.id.asc())
    )
    grouped: dict[int, list[str]] = defaultdict(list)
    for message_id, viewer_id in db.execute(stmt).all():
        grouped[message_id].append(viewer_id)
    return dict(grouped)


def _to_read(row: Row, deleted_by: list[str] | None = None) -> MessageRead:
    return MessageRead.model_validate({**row._mapping, "deleted_by": deleted_by or []})
