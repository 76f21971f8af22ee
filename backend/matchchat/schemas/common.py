"""Response envelopes shared by the message routes."""

from typing import Generic, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    """Single-payload envelope."""

    data: T


class ApiPage(BaseModel, Generic[T]):
    """List envelope with the window that produced it; ``offset + limit`` is the next older page."""

    data: list[T] = Field(default_factory=list)
    limit: int
    offset: int
