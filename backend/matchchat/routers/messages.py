"""Message store routes."""

from fastapi import APIRouter, Depends, HTTPException, Path, Query

from matchchat.db.dependencies import get_store
from matchchat.schemas.common import ApiPage, ApiResponse
from matchchat.schemas.message import (
    DeleteForMeResult,
    MarkReadResult,
    MessageCreate,
    MessageRead,
    ViewerRequest,
)
from matchchat.services.errors import MessageNotFoundError, StoreError, ValidationError
from matchchat.services.message_store import SqlMessageStore

router = APIRouter()


@router.get("/conversations/{match_id}/messages", response_model=ApiPage[MessageRead])
async def get_messages(
    match_id: str = Path(..., min_length=1),
    viewer_id: str = Query(..., min_length=1),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    store: SqlMessageStore = Depends(get_store),
) -> ApiPage[MessageRead]:
    """List one page of messages visible to the viewer, newest page first, oldest first within it."""

    try:
        records = await store.fetch_messages(match_id, viewer_id=viewer_id, limit=limit, offset=offset)
    except StoreError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return ApiPage(data=records, limit=limit, offset=offset)


@router.post(
    "/conversations/{match_id}/messages",
    response_model=ApiResponse[MessageRead],
    status_code=201,
)
async def post_message(
    payload: MessageCreate,
    match_id: str = Path(..., min_length=1),
    store: SqlMessageStore = Depends(get_store),
) -> ApiResponse[MessageRead]:
    """Store one message and notify live subscribers."""

    try:
        created = await store.insert_message(match_id, payload)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except StoreError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return ApiResponse(data=created)


@router.post("/conversations/{match_id}/read", response_model=ApiResponse[MarkReadResult])
async def mark_read(
    payload: ViewerRequest,
    match_id: str = Path(..., min_length=1),
    store: SqlMessageStore = Depends(get_store),
) -> ApiResponse[MarkReadResult]:
    """Stamp read receipts on the other party's unread messages."""

    try:
        stamped = await store.mark_read(match_id, payload.viewer_id)
    except StoreError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return ApiResponse(data=MarkReadResult(match_id=match_id, message_ids=[m.id for m in stamped]))


@router.post("/messages/{message_id}/delete-for-me", response_model=ApiResponse[DeleteForMeResult])
async def delete_for_me(
    payload: ViewerRequest,
    message_id: int = Path(..., ge=1),
    store: SqlMessageStore = Depends(get_store),
) -> ApiResponse[DeleteForMeResult]:
    """Hide one message for the requesting viewer only."""

    try:
        await store.soft_delete(message_id, payload.viewer_id)
    except MessageNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Message not found") from exc
    except StoreError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return ApiResponse(data=DeleteForMeResult(id=message_id, viewer_id=payload.viewer_id))
