"""
Observable profile state.

Holds the latest CompletionSnapshot and SignupStage and notifies
observers synchronously on every commit. The sync machinery is the only
publisher; everything else gets read-only values.
"""

import logging
from typing import Callable

from .catalog import DEFAULT_CATALOG, FieldCatalog
from .completion import CompletionSnapshot
from .progress import SignupStage

logger = logging.getLogger(__name__)

Observer = Callable[[CompletionSnapshot, SignupStage], None]


class ObserverHandle:
    """Registration handle returned by ObservableState.subscribe()."""

    def __init__(self, owner: "ObservableState", observer: Observer):
        self._owner = owner
        self._observer = observer
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self) -> None:
        if self._active:
            self._owner._remove(self._observer)
            self._active = False

    def __enter__(self) -> "ObserverHandle":
        return self

    def __exit__(self, *exc_info) -> None:
        self.unsubscribe()


class ObservableState:
    def __init__(self, catalog: FieldCatalog = DEFAULT_CATALOG):
        self._catalog = catalog
        self._snapshot = CompletionSnapshot.empty(catalog)
        self._stage = SignupStage.INITIAL
        self._observers: list[Observer] = []

    def subscribe(self, observer: Observer) -> ObserverHandle:
        self._observers.append(observer)
        return ObserverHandle(self, observer)

    def _remove(self, observer: Observer) -> None:
        try:
            self._observers.remove(observer)
        except ValueError:
            pass

    @property
    def observer_count(self) -> int:
        return len(self._observers)

    def current_snapshot(self) -> CompletionSnapshot:
        return self._snapshot

    def current_stage(self) -> SignupStage:
        return self._stage

    def publish(
        self,
        snapshot: CompletionSnapshot | None = None,
        stage: SignupStage | None = None,
    ) -> None:
        """
        Commit new values and notify every observer before returning.

        A failing observer is logged and skipped; it does not block the
        commit or the remaining observers.
        """
        if snapshot is not None:
            self._snapshot = snapshot
        if stage is not None:
            self._stage = stage

        for observer in list(self._observers):
            try:
                observer(self._snapshot, self._stage)
            except Exception:
                logger.exception("Profile state observer failed")

    def reset(self) -> None:
        """Back to the empty snapshot and INITIAL stage."""
        self.publish(CompletionSnapshot.empty(self._catalog), SignupStage.INITIAL)
