"""Error taxonomy for message delivery."""

from __future__ import annotations


class DeliveryError(RuntimeError):
    """Base class for message delivery failures."""


class ValidationError(DeliveryError):
    """Raised when message content is empty or invalid."""


class StoreError(DeliveryError):
    """Raised when the message store rejects an operation."""


class SchemaError(StoreError):
    """Raised when an optional column or table is missing from the store."""


class MessageNotFoundError(StoreError):
    """Raised when a referenced message does not exist."""

    def __init__(self, message_id: int) -> None:
        super().__init__(f"Message {message_id} not found")
        self.message_id = message_id


class TransientChannelError(DeliveryError):
    """Recorded when the change feed errors, disconnects or times out."""

    def __init__(self, match_id: str, status: str, detail: str | None = None) -> None:
        text = f"Change feed for {match_id} reported {status}"
        if detail:
            text = f"{text}: {detail}"
        super().__init__(text)
        self.match_id = match_id
        self.status = status


class PollFetchError(DeliveryError):
    """Recorded when one polling tick fails to fetch."""

    def __init__(self, match_id: str, tick: int) -> None:
        super().__init__(f"Poll tick {tick} for {match_id} failed")
        self.match_id = match_id
        self.tick = tick


class SendFailure(DeliveryError):
    """Raised when a send is rejected; carries the text to restore for retry."""

    def __init__(self, match_id: str, restore_content: str, temp_id: str | None = None) -> None:
        super().__init__(f"Failed to send message to {match_id}")
        self.match_id = match_id
        self.restore_content = restore_content
        self.temp_id = temp_id


class SessionStartError(DeliveryError):
    """Raised when a conversation cannot be opened; retry by entering again."""

    def __init__(self, match_id: str) -> None:
        super().__init__(f"Failed to load conversation {match_id}")
        self.match_id = match_id
