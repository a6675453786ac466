"""
Document Store Protocol.

The remote profile store as the sync engine sees it: keyed by user id,
with partial merge-update, full-document fetch and a change
subscription. The concrete Supabase implementation lives in client.py;
tests use an in-memory fake.
"""

from typing import Any, Callable, Protocol, runtime_checkable

ChangeCallback = Callable[[dict[str, Any]], None]


@runtime_checkable
class ChangeSubscription(Protocol):
    """Handle for a live change subscription."""

    async def close(self) -> None:
        """Stop receiving notifications. Safe to call more than once."""
        ...


@runtime_checkable
class DocumentStore(Protocol):
    """
    Remote profile documents.

    Implementations raise RemoteUnavailable for transport/store failures
    and StaleWriteRejected when a write loses to a concurrent one.
    """

    async def fetch(self, user_id: str) -> dict[str, Any] | None:
        """Full document, or None if the user has no document."""
        ...

    async def merge_update(self, user_id: str, fields: dict[str, Any]) -> None:
        """Overwrite the given fields, leaving the rest untouched."""
        ...

    async def subscribe(
        self, user_id: str, on_change: ChangeCallback
    ) -> ChangeSubscription:
        """
        Call `on_change(payload)` whenever the user's document changes.

        The payload is change metadata; it may carry a `commit_timestamp`.
        """
        ...
