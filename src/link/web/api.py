"""
Profile API Endpoints.

The UI boundary of the profile engine: current completion and stage,
saving edit-screen values, advancing/resetting signup progress, logout.

Each signed-in user gets a SyncCoordinator that is resolved against the
remote store and subscribed to change notifications on first use. Idle
coordinators are closed and dropped so the registry stays bounded.
"""

import logging
from collections import OrderedDict
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Any

from fastapi import APIRouter, Depends, Header, HTTPException
from pydantic import BaseModel, Field

from link.cache import MemoryStore, ProfileCache
from link.config import get_core_settings
from link.db.adapter import DocumentStore
from link.db.request_context import set_request_context
from link.profile.errors import (
    InvalidStageTransition,
    ProfileSyncError,
    RemoteUnavailable,
    SubsystemNotInitialized,
    WriteCancelled,
    WriteInFlight,
)
from link.profile.progress import TOTAL_STEPS, SignupStage
from link.profile.session import AppState, resolve_app_state
from link.profile.sync import SyncCoordinator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/profile", tags=["profile"])


def _utc_now() -> datetime:
    """Get current UTC time."""
    return datetime.now(timezone.utc)


# =============================================================================
# Coordinator Registry
# =============================================================================


class CoordinatorRegistry:
    """
    Live coordinators by user id, least recently used first.

    Entries idle longer than `idle_timeout` are closed on the next access;
    past `max_size` the least recently used entry is closed to make room.
    """

    def __init__(self, idle_timeout: timedelta, max_size: int, clock=_utc_now):
        self.idle_timeout = idle_timeout
        self.max_size = max_size
        self.clock = clock
        self._entries: OrderedDict[str, tuple[SyncCoordinator, datetime]] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, user_id: object) -> bool:
        return user_id in self._entries

    def get(self, user_id: str) -> SyncCoordinator | None:
        entry = self._entries.get(user_id)
        if entry is None:
            return None
        self._entries[user_id] = (entry[0], self.clock())
        self._entries.move_to_end(user_id)
        return entry[0]

    async def add(self, user_id: str, coordinator: SyncCoordinator) -> None:
        self._entries[user_id] = (coordinator, self.clock())
        self._entries.move_to_end(user_id)
        while len(self._entries) > self.max_size:
            evicted, (oldest, _) = self._entries.popitem(last=False)
            logger.info(f"Coordinator registry full, closing profile sync for {evicted}")
            await oldest.close()

    def pop(self, user_id: str) -> SyncCoordinator | None:
        entry = self._entries.pop(user_id, None)
        return entry[0] if entry else None

    async def evict_idle(self) -> list[str]:
        """Close coordinators idle past the timeout. Returns their user ids."""
        cutoff = self.clock() - self.idle_timeout
        idle = [uid for uid, (_, last_used) in self._entries.items() if last_used < cutoff]
        for user_id in idle:
            coordinator, _ = self._entries.pop(user_id)
            await coordinator.close()
            logger.info(f"Closed idle profile sync for {user_id}")
        return idle

    async def close_all(self) -> None:
        while self._entries:
            user_id, (coordinator, _) = self._entries.popitem()
            await coordinator.close()
            logger.debug(f"Closed profile sync for {user_id}")


@lru_cache
def get_registry() -> CoordinatorRegistry:
    core = get_core_settings()
    return CoordinatorRegistry(
        idle_timeout=timedelta(seconds=core.coordinator_idle_seconds),
        max_size=core.max_coordinators,
    )


def _new_coordinator(store: DocumentStore) -> SyncCoordinator:
    return SyncCoordinator(store, ProfileCache(MemoryStore()))


# =============================================================================
# Auth
# =============================================================================


class AuthenticatedUser(BaseModel):
    """Authenticated user info from Supabase JWT."""
    id: str
    email: str | None = None
    access_token: str


async def get_current_user(authorization: str = Header(None)) -> AuthenticatedUser:
    """
    Validate Supabase JWT and extract user info.

    Expects: Authorization: Bearer <supabase_access_token>
    """
    from link.db.client import get_client

    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing or invalid authorization header")

    token = authorization.replace("Bearer ", "")

    try:
        client = await get_client()
        user_response = await client.auth.get_user(token)

        if not user_response or not user_response.user:
            raise HTTPException(status_code=401, detail="Invalid token")

        user = AuthenticatedUser(
            id=user_response.user.id,
            email=user_response.user.email,
            access_token=token,
        )
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Auth error: {e}")
        raise HTTPException(status_code=401, detail="Authentication failed")

    set_request_context(access_token=token, user_id=user.id)
    return user


async def get_coordinator(user: AuthenticatedUser = Depends(get_current_user)) -> SyncCoordinator:
    """
    Coordinator for the signed-in user.

    On first use it is resolved against the remote store (remote stage
    wins) and subscribed to change notifications.
    """
    from link.db.client import SupabaseDocumentStore

    registry = get_registry()
    await registry.evict_idle()

    coordinator = registry.get(user.id)
    if coordinator is not None:
        if isinstance(coordinator.store, SupabaseDocumentStore):
            coordinator.store.authorize(user.access_token)
        return coordinator

    store = await SupabaseDocumentStore.connect(user.access_token)
    coordinator = _new_coordinator(store)
    app_state = await resolve_app_state(coordinator, user.id)
    if app_state == AppState.UNAUTHENTICATED:
        raise HTTPException(status_code=403, detail="Profile unavailable")
    if coordinator.cache.load_document() is None:
        # Store unreachable: don't keep an unresolved coordinator around
        await coordinator.close()
        raise HTTPException(status_code=503, detail="Profile store unavailable, try again")

    try:
        await coordinator.subscribe()
    except RemoteUnavailable as e:
        logger.warning(f"Serving {user.id} without change notifications: {e}")

    await registry.add(user.id, coordinator)
    return coordinator


# =============================================================================
# Request/Response Models
# =============================================================================


class SaveRequest(BaseModel):
    """Field values from one edit screen."""
    fields: dict[str, Any] = Field(default_factory=dict)
    completes: SignupStage | None = None  # Signup stage this screen finishes


class StageRequest(BaseModel):
    stage: SignupStage


class StateResponse(BaseModel):
    """Current completion and signup progress."""
    user_id: str | None
    stage: str
    step: int
    total_steps: int = TOTAL_STEPS
    profile_completion: float
    is_complete: bool
    incomplete_fields: list[dict] = Field(default_factory=list)


def _state_response(coordinator: SyncCoordinator) -> StateResponse:
    snapshot = coordinator.current_snapshot()
    return StateResponse(
        user_id=coordinator.user_id,
        stage=coordinator.current_stage().value,
        step=coordinator.current_step(),
        profile_completion=snapshot.ratio,
        is_complete=snapshot.is_complete,
        incomplete_fields=[r.to_dict() for r in snapshot.incomplete_fields],
    )


def _http_error(error: ProfileSyncError) -> HTTPException:
    if isinstance(error, WriteInFlight):
        return HTTPException(status_code=409, detail=str(error))
    if isinstance(error, InvalidStageTransition):
        return HTTPException(status_code=400, detail=str(error))
    if isinstance(error, SubsystemNotInitialized):
        return HTTPException(status_code=401, detail=str(error))
    if isinstance(error, (RemoteUnavailable, WriteCancelled)):
        return HTTPException(status_code=503, detail="Profile store unavailable, try again")
    return HTTPException(status_code=500, detail=str(error))


# =============================================================================
# Endpoints
# =============================================================================


@router.get("/state", response_model=StateResponse)
async def get_profile_state(coordinator: SyncCoordinator = Depends(get_coordinator)) -> StateResponse:
    """Current completion and stage, refreshed from the store when stale."""
    if coordinator.should_refresh():
        try:
            await coordinator.refresh()
        except RemoteUnavailable as e:
            # Stale but available
            logger.warning(f"Serving cached profile state: {e}")
    return _state_response(coordinator)


@router.patch("", response_model=StateResponse)
async def save_profile(
    request: SaveRequest,
    coordinator: SyncCoordinator = Depends(get_coordinator),
) -> StateResponse:
    """Save edit-screen values (and optionally the stage they complete)."""
    try:
        await coordinator.save(request.fields, completes=request.completes)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ProfileSyncError as e:
        raise _http_error(e)
    return _state_response(coordinator)


@router.post("/stage", response_model=StateResponse)
async def advance_stage(
    request: StageRequest,
    coordinator: SyncCoordinator = Depends(get_coordinator),
) -> StateResponse:
    try:
        await coordinator.advance_stage(request.stage)
    except ProfileSyncError as e:
        raise _http_error(e)
    return _state_response(coordinator)


@router.post("/reset", response_model=StateResponse)
async def reset_progress(coordinator: SyncCoordinator = Depends(get_coordinator)) -> StateResponse:
    """Restart signup from the first screen."""
    try:
        await coordinator.reset_progress()
    except ProfileSyncError as e:
        raise _http_error(e)
    return _state_response(coordinator)


@router.post("/logout")
async def logout(user: AuthenticatedUser = Depends(get_current_user)) -> dict:
    """Session ended: drop the user's local state and subscriptions."""
    coordinator = get_registry().pop(user.id)
    if coordinator is not None:
        await coordinator.logout()
    return {"success": True}
