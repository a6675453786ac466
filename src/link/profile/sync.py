"""
Profile Sync Coordinator.

Keeps the local cache, the remote profile store and the observable
completion/stage state consistent for one signed-in user.

Write path:
    save()/advance_stage() -> remote merge-update (timeout, cancellable)
        -> on ack: commit document + stage to cache, rescore, publish
        -> on failure: roll back speculative stage, raise

Change notifications from the store only bump a timestamp; should_refresh()
decides when a full refetch is worth it.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator, Awaitable, Callable, Mapping

from link.cache.profile_cache import ProfileCache
from link.config import get_core_settings
from link.db.adapter import ChangeSubscription, DocumentStore

from .catalog import DEFAULT_CATALOG, FieldCatalog
from .completion import CompletionSnapshot, score
from .errors import (
    RemoteUnavailable,
    StaleWriteRejected,
    SubsystemNotInitialized,
    WriteCancelled,
    WriteInFlight,
)
from .observable import ObservableState, Observer, ObserverHandle
from .progress import ProgressStateMachine, SignupStage, parse_stage, stage_to_step

logger = logging.getLogger(__name__)

# Document field holding the signup stage tag
STAGE_FIELD = "setupProgress"

Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    """Get current UTC time."""
    return datetime.now(timezone.utc)


@dataclass
class SyncState:
    """Process-local sync bookkeeping. Reset on logout."""
    last_local_write_at: datetime | None = None
    last_observed_remote_change_at: datetime | None = None
    write_in_flight: bool = False

    def reset(self) -> None:
        self.last_local_write_at = None
        self.last_observed_remote_change_at = None
        self.write_in_flight = False


class SyncCoordinator:
    """
    Single writer for the user's CompletionSnapshot and SignupStage.

    All methods must be called from the event loop that owns the
    coordinator. Concurrent writes are not queued: a second save() or
    advance_stage() while one is outstanding raises WriteInFlight.

    Example:
        coordinator = SyncCoordinator(store, ProfileCache(JsonFileStore(path)))
        async with coordinator.session(user_id):
            await coordinator.save({"gender": "woman"}, completes=SignupStage.GENDER_COMPLETE)
            if coordinator.should_refresh():
                await coordinator.refresh()
    """

    def __init__(
        self,
        store: DocumentStore,
        cache: ProfileCache,
        *,
        catalog: FieldCatalog = DEFAULT_CATALOG,
        state: ObservableState | None = None,
        staleness_window: timedelta | None = None,
        remote_timeout: float | None = None,
        clock: Clock = _utc_now,
    ):
        if staleness_window is None or remote_timeout is None:
            settings = get_core_settings()
            if staleness_window is None:
                staleness_window = timedelta(seconds=settings.staleness_window_seconds)
            if remote_timeout is None:
                remote_timeout = settings.remote_timeout_seconds

        self.store = store
        self.cache = cache
        self.catalog = catalog
        self.state = state or ObservableState(catalog)
        self.staleness_window = staleness_window
        self.remote_timeout = remote_timeout
        self.clock = clock

        self.machine = ProgressStateMachine()
        self.sync_state = SyncState()

        self._user_id: str | None = None
        self._document: dict[str, Any] | None = None
        self._subscription: ChangeSubscription | None = None
        self._last_change_marker: Any = None
        self._pending: asyncio.Future | None = None
        self._cancel_requested = False
        # Bumped on logout; work started under an older value must not commit
        self._generation = 0

    # =========================================================================
    # Read surface
    # =========================================================================

    @property
    def user_id(self) -> str | None:
        return self._user_id

    @property
    def is_subscribed(self) -> bool:
        return self._subscription is not None

    def current_snapshot(self) -> CompletionSnapshot:
        """Latest committed snapshot; the empty snapshot when nobody is signed in."""
        if self._user_id is None:
            return CompletionSnapshot.empty(self.catalog)
        return self.state.current_snapshot()

    def current_stage(self) -> SignupStage:
        if self._user_id is None:
            return SignupStage.INITIAL
        return self.state.current_stage()

    def current_step(self) -> int:
        return stage_to_step(self.current_stage())

    def observe(self, observer: Observer) -> ObserverHandle:
        return self.state.subscribe(observer)

    def _require_user(self) -> str:
        if self._user_id is None:
            raise SubsystemNotInitialized("No authenticated user bound to the profile sync")
        return self._user_id

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self, user_id: str) -> None:
        """
        Bind `user_id` and publish whatever the local cache holds.

        No network: the UI can render the cached stage and completion
        before the first round trip.
        """
        if self._user_id and self._user_id != user_id:
            await self.logout()

        self._user_id = user_id
        self._document = None
        self.cache.bind(user_id)

        self.machine.restore(self.cache.load_stage())
        self.sync_state = SyncState(
            last_local_write_at=self.cache.last_local_write_at,
            last_observed_remote_change_at=self.cache.last_observed_remote_change_at,
        )
        snapshot = self.cache.load_snapshot() or CompletionSnapshot.empty(self.catalog)
        self.state.publish(snapshot, self.machine.stage)
        logger.info(f"Profile sync started for {user_id} at stage {self.machine.stage.value}")

    async def logout(self) -> None:
        """
        Session ended: drop everything local and reset to INITIAL.

        Remote progress is left alone; use reset_progress() to clear it.
        """
        self._generation += 1
        self.cancel_pending()
        await self.unsubscribe()

        self.cache.clear()
        self.sync_state.reset()
        self.machine.reset()
        self._document = None
        self._last_change_marker = None
        self._user_id = None

        self.state.reset()
        logger.info("Profile sync reset after logout")

    async def close(self) -> None:
        """Tear down remote resources without touching local state."""
        self.cancel_pending()
        await self.unsubscribe()

    @asynccontextmanager
    async def session(self, user_id: str) -> AsyncIterator["SyncCoordinator"]:
        """
        Start a session and guarantee teardown.

        The change subscription is closed and any pending write cancelled
        on exit, including exit by exception or task cancellation.
        """
        await self.start(user_id)
        try:
            try:
                await self.subscribe()
            except RemoteUnavailable as e:
                logger.warning(f"Continuing without change notifications: {e}")
            yield self
        finally:
            await self.close()

    # =========================================================================
    # Remote calls
    # =========================================================================

    async def _remote(self, call: Awaitable[Any]) -> Any:
        try:
            return await asyncio.wait_for(call, timeout=self.remote_timeout)
        except asyncio.TimeoutError as e:
            raise RemoteUnavailable(
                f"Remote call timed out after {self.remote_timeout}s"
            ) from e

    async def _run_cancellable(self, call: Awaitable[Any]) -> Any:
        task = asyncio.ensure_future(self._remote(call))
        self._pending = task
        try:
            return await task
        except asyncio.CancelledError:
            if self._cancel_requested and task.cancelled():
                raise WriteCancelled("Pending profile write was cancelled") from None
            raise
        finally:
            self._pending = None
            self._cancel_requested = False

    def cancel_pending(self) -> bool:
        """Cancel an outstanding remote write. Returns True if one was cancelled."""
        if self._pending is None or self._pending.done():
            return False
        self._cancel_requested = True
        self._pending.cancel()
        logger.info("Cancelled pending profile write")
        return True

    async def _write(self, user_id: str, fields: dict[str, Any]) -> None:
        try:
            await self._run_cancellable(self.store.merge_update(user_id, fields))
        except StaleWriteRejected:
            # Last write wins: re-send our value once
            logger.info(f"Profile write for {user_id} lost a concurrent update, re-sending")
            await self._run_cancellable(self.store.merge_update(user_id, fields))

    def _begin_write(self) -> None:
        if self.sync_state.write_in_flight:
            raise WriteInFlight("A profile write is already in progress")
        self.sync_state.write_in_flight = True

    def _end_write(self, generation: int) -> None:
        # A logout in between already reset the flag, possibly for a newer write
        if generation == self._generation:
            self.sync_state.write_in_flight = False

    def _ensure_session(self, generation: int) -> None:
        if generation != self._generation:
            raise WriteCancelled("Profile session ended before the result could be committed")

    def _rollback_stage(self) -> None:
        self.machine.rollback()
        if self.state.current_stage() != self.machine.stage:
            self.state.publish(stage=self.machine.stage)

    def _mark_local_write(self) -> None:
        now = self.clock()
        self.sync_state.last_local_write_at = now
        self.cache.last_local_write_at = now

    # =========================================================================
    # Document load / refresh
    # =========================================================================

    async def load(self, user_id: str | None = None) -> dict[str, Any]:
        """
        Profile document for the user, preferring the local cache.

        On a cache miss the document is fetched remotely and written to
        the cache. A RemoteUnavailable leaves the cache untouched.
        """
        user_id = user_id or self._require_user()
        if user_id != self._user_id:
            await self.start(user_id)

        if self._document is not None:
            return dict(self._document)

        cached = self.cache.load_document()
        if cached is not None:
            self._document = cached
            return dict(cached)

        generation = self._generation
        document = await self._remote(self.store.fetch(user_id)) or {}
        self._ensure_session(generation)
        self._document = document
        self.cache.store_document(document)
        logger.debug(f"Filled local cache with profile for {user_id}")
        return dict(document)

    async def fetch_remote(self) -> dict[str, Any] | None:
        """Raw remote document (None if missing). Does not touch the cache."""
        user_id = self._require_user()
        return await self._remote(self.store.fetch(user_id))

    def apply_remote(
        self,
        document: dict[str, Any],
        *,
        authoritative_stage: bool = False,
    ) -> CompletionSnapshot:
        """
        Adopt a freshly fetched document: cache it, rescore, publish.

        The remote stage tag is adopted when it is ahead of the local one
        (signup continued on another device). With authoritative_stage it
        is adopted unconditionally, which is what launch-time resolution
        wants.
        """
        self._require_user()
        self._document = dict(document)
        self.cache.store_document(self._document)

        if STAGE_FIELD in document and not self.sync_state.write_in_flight:
            remote_stage = parse_stage(document.get(STAGE_FIELD))
            if authoritative_stage or self.machine.can_advance(remote_stage):
                self.machine.restore(remote_stage)
                self.cache.store_stage(remote_stage)

        snapshot = score(document, self.catalog, computed_at=self.clock())
        self.cache.store_snapshot(snapshot)
        self._mark_local_write()
        # An in-flight write may have advanced the machine speculatively
        stage = (
            self.machine.persisted_stage
            if self.sync_state.write_in_flight
            else self.machine.stage
        )
        self.state.publish(snapshot, stage)
        return snapshot

    async def refresh(self) -> CompletionSnapshot:
        """Refetch the document, rescore and publish."""
        generation = self._generation
        document = await self.fetch_remote() or {}
        self._ensure_session(generation)
        snapshot = self.apply_remote(document)
        logger.info(f"Refreshed profile for {self._user_id}: {snapshot.percent}% complete")
        return snapshot

    # =========================================================================
    # Writes
    # =========================================================================

    async def save(
        self,
        update: Mapping[str, Any],
        *,
        completes: SignupStage | None = None,
    ) -> CompletionSnapshot:
        """
        Write a partial profile update.

        Args:
            update: Field values from one edit screen.
            completes: Signup stage this screen finishes, written in the
                       same remote update.

        Returns:
            The new CompletionSnapshot, committed and published.

        Raises:
            WriteInFlight: another write is outstanding.
            RemoteUnavailable / WriteCancelled: nothing was committed.
            InvalidStageTransition: `completes` is behind the current stage.
        """
        user_id = self._require_user()
        fields = dict(update)
        if STAGE_FIELD in fields:
            raise ValueError(f"{STAGE_FIELD} is written through advance_stage()")

        generation = self._generation
        self._begin_write()
        advanced = False
        try:
            base = await self.load(user_id)
            self._ensure_session(generation)
            if completes is not None:
                advanced = self.machine.advance(completes)
                if advanced:
                    fields[STAGE_FIELD] = completes.value
            if fields:
                await self._write(user_id, fields)
            self._ensure_session(generation)
        except BaseException as e:
            if advanced and generation == self._generation:
                self._rollback_stage()
            logger.warning(f"Profile save failed for {user_id}, nothing committed: {e!r}")
            raise
        finally:
            self._end_write(generation)

        document = {**base, **fields}
        self._document = document
        self.cache.store_document(document)
        if advanced:
            self.machine.mark_persisted()
            self.cache.store_stage(self.machine.stage)

        snapshot = score(document, self.catalog, computed_at=self.clock())
        self.cache.store_snapshot(snapshot)
        self._mark_local_write()
        self.state.publish(snapshot, self.machine.stage)
        logger.info(f"Saved {sorted(update)} for {user_id}: {snapshot.percent}% complete")
        return snapshot

    async def advance_stage(self, target: SignupStage) -> SignupStage:
        """
        Persist a completed signup milestone.

        The in-memory stage moves speculatively and is rolled back to the
        last persisted stage if the remote write fails.
        """
        user_id = self._require_user()

        generation = self._generation
        self._begin_write()
        try:
            if not self.machine.advance(target):
                return self.machine.stage
            await self._write(user_id, {STAGE_FIELD: target.value})
            self._ensure_session(generation)
        except BaseException as e:
            if generation == self._generation:
                self._rollback_stage()
            logger.warning(f"Stage write failed for {user_id}: {e!r}")
            raise
        finally:
            self._end_write(generation)

        self._commit_stage(target)
        return target

    async def reset_progress(self) -> None:
        """Explicitly restart signup: clear the remote stage, then the local one."""
        user_id = self._require_user()

        generation = self._generation
        self._begin_write()
        try:
            await self._write(user_id, {STAGE_FIELD: SignupStage.INITIAL.value})
            self._ensure_session(generation)
        finally:
            self._end_write(generation)

        self.machine.reset()
        self._commit_stage(SignupStage.INITIAL)

    def _commit_stage(self, stage: SignupStage) -> None:
        self.machine.mark_persisted()
        self.cache.store_stage(stage)
        if self._document is not None:
            self._document[STAGE_FIELD] = stage.value
            self.cache.store_document(self._document)
        self._mark_local_write()
        self.state.publish(stage=stage)

    # =========================================================================
    # Change notifications
    # =========================================================================

    async def subscribe(self) -> None:
        """Open the remote change subscription. No-op if already open."""
        if self._subscription is not None:
            return
        user_id = self._require_user()
        self._subscription = await self._remote(
            self.store.subscribe(user_id, self._on_remote_change)
        )

    async def unsubscribe(self) -> None:
        """Close the change subscription. Safe to call repeatedly."""
        subscription, self._subscription = self._subscription, None
        if subscription is None:
            return
        try:
            await self._remote(subscription.close())
        except RemoteUnavailable as e:
            logger.warning(f"Failed to close profile subscription cleanly: {e}")

    def _on_remote_change(self, payload: Mapping[str, Any]) -> None:
        """
        Record that the remote document changed.

        Metadata only: the document is not refetched here. A repeated
        notification for the same commit is ignored.
        """
        marker = payload.get("commit_timestamp") if payload else None
        if marker is not None and marker == self._last_change_marker:
            logger.debug(f"Ignoring duplicate change notification {marker}")
            return
        self._last_change_marker = marker

        observed = self.clock()
        previous = self.sync_state.last_observed_remote_change_at
        if previous is not None and observed <= previous:
            return
        self.sync_state.last_observed_remote_change_at = observed
        self.cache.last_observed_remote_change_at = observed

    def should_refresh(self, now: datetime | None = None) -> bool:
        """
        True iff the staleness window has passed since the last local
        write AND a remote change was observed after that write.
        """
        last_change = self.sync_state.last_observed_remote_change_at
        if last_change is None:
            return False

        last_write = self.sync_state.last_local_write_at
        if last_write is None:
            return True

        now = now or self.clock()
        return now - last_write > self.staleness_window and last_change > last_write
