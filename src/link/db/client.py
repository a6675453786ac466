"""
Link - Supabase Document Store.

Profile documents are rows in the users table (one column per profile
field). All remote reads, writes and change subscriptions go through here.
"""

import logging
from typing import Any

import httpx
from postgrest.exceptions import APIError
from supabase import AsyncClient, acreate_client

from link.config import settings
from link.db.adapter import ChangeCallback
from link.db.request_context import get_access_token
from link.profile.errors import RemoteUnavailable, StaleWriteRejected

logger = logging.getLogger(__name__)

# PostgreSQL serialization_failure: lost a concurrent update
_SERIALIZATION_FAILURE = "40001"

_TRANSPORT_ERRORS = (APIError, httpx.HTTPError, OSError)

# Singleton client instance
_client: AsyncClient | None = None


async def get_client() -> AsyncClient:
    """
    Get the async Supabase client.

    Uses singleton pattern to reuse connection.
    """
    global _client

    if _client is None:
        _client = await acreate_client(
            settings.supabase_url,
            settings.supabase_anon_key,
        )

    return _client


async def get_user_client(access_token: str) -> AsyncClient:
    """
    Client whose table calls run as the signed-in user.

    Not shared: the Authorization header is per client, so each user gets
    their own.
    """
    client = await acreate_client(
        settings.supabase_url,
        settings.supabase_anon_key,
    )
    client.postgrest.auth(access_token)
    return client


def _translate(error: Exception, action: str, user_id: str) -> Exception:
    if isinstance(error, APIError) and error.code == _SERIALIZATION_FAILURE:
        return StaleWriteRejected(f"{action} for {user_id} lost a concurrent update")
    return RemoteUnavailable(f"{action} for {user_id} failed: {error}")


class RealtimeSubscription:
    """Wraps a realtime channel so it can be closed once."""

    def __init__(self, client: AsyncClient, channel: Any):
        self._client = client
        self._channel = channel
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._client.remove_channel(self._channel)


class SupabaseDocumentStore:
    """
    DocumentStore backed by a Supabase table.

    Example:
        store = SupabaseDocumentStore(await get_client())
        doc = await store.fetch(user_id)
    """

    def __init__(
        self,
        client: AsyncClient,
        table: str | None = None,
        access_token: str | None = None,
    ):
        self._client = client
        self._table = table or settings.users_table
        self._access_token = access_token

    @classmethod
    async def connect(cls, access_token: str | None = None) -> "SupabaseDocumentStore":
        """
        Store for the current caller.

        Uses `access_token`, else the token recorded for the current API
        request, else the shared anonymous client.
        """
        access_token = access_token or get_access_token()
        if access_token:
            return cls(await get_user_client(access_token), access_token=access_token)
        return cls(await get_client())

    def authorize(self, access_token: str) -> None:
        """Swap in a refreshed access token for subsequent calls."""
        if access_token == self._access_token:
            return
        self._client.postgrest.auth(access_token)
        self._access_token = access_token

    async def fetch(self, user_id: str) -> dict[str, Any] | None:
        try:
            response = (
                await self._client.table(self._table)
                .select("*")
                .eq("id", user_id)
                .maybe_single()
                .execute()
            )
        except _TRANSPORT_ERRORS as e:
            logger.warning(f"Profile fetch failed for {user_id}: {e}")
            raise _translate(e, "fetch", user_id) from e

        # maybe_single() yields no response at all when the row is missing
        if response is None or not response.data:
            return None
        return dict(response.data)

    async def merge_update(self, user_id: str, fields: dict[str, Any]) -> None:
        try:
            response = (
                await self._client.table(self._table)
                .update(fields)
                .eq("id", user_id)  # Security: only the user's own row
                .execute()
            )
        except _TRANSPORT_ERRORS as e:
            logger.warning(f"Profile update failed for {user_id}: {e}")
            raise _translate(e, "update", user_id) from e

        if not response.data:
            raise RemoteUnavailable(f"update for {user_id} matched no profile document")

    async def subscribe(self, user_id: str, on_change: ChangeCallback) -> RealtimeSubscription:
        def _handle(payload: dict[str, Any]) -> None:
            data = payload.get("data", payload) if isinstance(payload, dict) else {}
            on_change(dict(data))

        channel = self._client.channel(f"profile:{user_id}")
        channel.on_postgres_changes(
            "UPDATE",
            schema="public",
            table=self._table,
            filter=f"id=eq.{user_id}",
            callback=_handle,
        )
        try:
            await channel.subscribe()
        except _TRANSPORT_ERRORS as e:
            logger.warning(f"Profile subscription failed for {user_id}: {e}")
            raise RemoteUnavailable(f"subscribe for {user_id} failed: {e}") from e

        logger.debug(f"Subscribed to profile changes for {user_id}")
        return RealtimeSubscription(self._client, channel)
