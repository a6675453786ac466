"""
Launch-time session resolution.

Decides which top-level surface the app shows for the signed-in user:
the signup flow (resumed at the right step), the main app, or sign-in.
"""

import logging
from enum import Enum

from .errors import AccountUnavailable, RemoteUnavailable
from .progress import SignupStage, stage_to_step
from .sync import SyncCoordinator

logger = logging.getLogger(__name__)

DISABLED_FIELD = "isDisabled"


class AppState(str, Enum):
    LOADING = "loading"
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"  # signup in progress
    SETUP_COMPLETE = "setup_complete"


def _check_account(user_id: str, document: dict | None) -> dict:
    if document is None:
        raise AccountUnavailable(f"No profile document for {user_id}")
    if document.get(DISABLED_FIELD) is True:
        raise AccountUnavailable(f"Account {user_id} is disabled")
    return document


async def resolve_app_state(coordinator: SyncCoordinator, user_id: str | None) -> AppState:
    """
    Resolve the app state at launch or after an auth change.

    - No user: terminal reset, sign-in screen.
    - Missing or disabled profile: logout, sign-in screen.
    - Store unreachable: trust the locally cached stage.
    - Otherwise the remote stage wins and the cache is brought in line.
    """
    if not user_id:
        await coordinator.logout()
        return AppState.UNAUTHENTICATED

    await coordinator.start(user_id)

    try:
        document = _check_account(user_id, await coordinator.fetch_remote())
    except AccountUnavailable as e:
        logger.warning(f"Signing out: {e}")
        await coordinator.logout()
        return AppState.UNAUTHENTICATED
    except RemoteUnavailable as e:
        logger.warning(f"Could not check setup progress, using cached stage: {e}")
        return _state_for(coordinator.current_stage())

    coordinator.apply_remote(document, authoritative_stage=True)
    return _state_for(coordinator.current_stage())


def _state_for(stage: SignupStage) -> AppState:
    return AppState.SETUP_COMPLETE if stage == SignupStage.COMPLETE else AppState.AUTHENTICATED


def current_step(coordinator: SyncCoordinator) -> int:
    """UI step the signup flow should resume on."""
    return stage_to_step(coordinator.current_stage())
