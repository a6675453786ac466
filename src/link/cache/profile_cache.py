"""
Local profile cache.

Typed view over a KeyValueStore that mirrors what the app needs before
its first network round trip: the last completion snapshot, the signup
stage tag, the profile document, and the two sync timestamps.

Only the sync coordinator writes here, and only after the remote store
acknowledged the corresponding write.
"""

import logging
from datetime import datetime, timezone
from typing import Any

from link.cache.store import KeyValueStore
from link.profile.completion import CompletionSnapshot
from link.profile.progress import SignupStage, parse_stage

logger = logging.getLogger(__name__)

# Keys shared with earlier app builds
STAGE_KEY = "currentSignupProgress"
SETUP_COMPLETE_KEY = "setupComplete"

SNAPSHOT_KEY = "profileCompletion"
DOCUMENT_KEY = "profileDocument"
USER_KEY = "cachedUserId"
LAST_LOCAL_WRITE_KEY = "lastLocalWriteAt"
LAST_REMOTE_CHANGE_KEY = "lastObservedRemoteChangeAt"


def _parse_iso(iso_str: str | None) -> datetime | None:
    """Parse ISO format string to an aware UTC datetime."""
    if not iso_str:
        return None
    try:
        if iso_str.endswith("Z"):
            iso_str = iso_str[:-1] + "+00:00"
        parsed = datetime.fromisoformat(iso_str)
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class ProfileCache:
    def __init__(self, store: KeyValueStore):
        self._store = store

    # -------------------------------------------------------------------------
    # Ownership
    # -------------------------------------------------------------------------

    @property
    def user_id(self) -> str | None:
        return self._store.get(USER_KEY)

    def bind(self, user_id: str) -> None:
        """Claim the cache for `user_id`, dropping another user's entries."""
        cached = self.user_id
        if cached and cached != user_id:
            logger.info(f"Local cache belonged to {cached}, clearing for {user_id}")
            self.clear()
        if cached != user_id:
            self._store.set(USER_KEY, user_id)

    def clear(self) -> None:
        self._store.clear()

    # -------------------------------------------------------------------------
    # Stage
    # -------------------------------------------------------------------------

    def load_stage(self) -> SignupStage:
        return parse_stage(self._store.get(STAGE_KEY))

    def store_stage(self, stage: SignupStage) -> None:
        self._store.set(STAGE_KEY, stage.value)
        self._store.set(SETUP_COMPLETE_KEY, stage == SignupStage.COMPLETE)

    @property
    def setup_complete(self) -> bool:
        return bool(self._store.get(SETUP_COMPLETE_KEY, False))

    # -------------------------------------------------------------------------
    # Snapshot & document
    # -------------------------------------------------------------------------

    def load_snapshot(self) -> CompletionSnapshot | None:
        raw = self._store.get(SNAPSHOT_KEY)
        if not isinstance(raw, dict):
            return None
        try:
            return CompletionSnapshot.from_dict(raw)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Ignoring corrupt cached completion snapshot: {e}")
            return None

    def store_snapshot(self, snapshot: CompletionSnapshot) -> None:
        self._store.set(SNAPSHOT_KEY, snapshot.to_dict())

    def load_document(self) -> dict[str, Any] | None:
        raw = self._store.get(DOCUMENT_KEY)
        return dict(raw) if isinstance(raw, dict) else None

    def store_document(self, document: dict[str, Any]) -> None:
        self._store.set(DOCUMENT_KEY, document)

    # -------------------------------------------------------------------------
    # Sync timestamps
    # -------------------------------------------------------------------------

    @property
    def last_local_write_at(self) -> datetime | None:
        return _parse_iso(self._store.get(LAST_LOCAL_WRITE_KEY))

    @last_local_write_at.setter
    def last_local_write_at(self, value: datetime | None) -> None:
        self._set_timestamp(LAST_LOCAL_WRITE_KEY, value)

    @property
    def last_observed_remote_change_at(self) -> datetime | None:
        return _parse_iso(self._store.get(LAST_REMOTE_CHANGE_KEY))

    @last_observed_remote_change_at.setter
    def last_observed_remote_change_at(self, value: datetime | None) -> None:
        self._set_timestamp(LAST_REMOTE_CHANGE_KEY, value)

    def _set_timestamp(self, key: str, value: datetime | None) -> None:
        if value is None:
            self._store.delete(key)
        else:
            self._store.set(key, value.isoformat())
