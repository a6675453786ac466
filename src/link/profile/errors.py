"""
Profile sync error taxonomy.

Every failure the completion/progress subsystem can surface derives from
ProfileSyncError, so callers can catch the whole family with one handler.
Store adapters map library exceptions onto these at the boundary.
"""

__all__ = [
    "ProfileSyncError",
    "RemoteUnavailable",
    "StaleWriteRejected",
    "SchemaMismatch",
    "SubsystemNotInitialized",
    "WriteInFlight",
    "InvalidStageTransition",
    "AccountUnavailable",
    "WriteCancelled",
]


class ProfileSyncError(Exception):
    """Base class for all profile sync errors."""

    pass


class RemoteUnavailable(ProfileSyncError):
    """Network or store failure on a read or write (includes timeouts)."""

    pass


class StaleWriteRejected(ProfileSyncError):
    """
    The store rejected a write because of a concurrent modification.

    Last-write-wins: the coordinator re-sends the same value once.
    """

    pass


class SchemaMismatch(ProfileSyncError):
    """A stored value's type does not match its field definition."""

    def __init__(self, field: str, expected: str, actual: type):
        super().__init__(
            f"Field {field!r} expected {expected}, got {actual.__name__}"
        )
        self.field = field
        self.expected = expected
        self.actual = actual


class SubsystemNotInitialized(ProfileSyncError):
    """An operation needed an authenticated user but none is bound."""

    pass


class WriteInFlight(ProfileSyncError):
    """A save or stage write was attempted while another is outstanding."""

    pass


class InvalidStageTransition(ProfileSyncError):
    """A stage transition would move the signup flow backwards."""

    def __init__(self, current: str, requested: str):
        super().__init__(f"Cannot move signup progress from {current} back to {requested}")
        self.current = current
        self.requested = requested


class AccountUnavailable(ProfileSyncError):
    """The user's profile document is missing or the account is disabled."""

    pass


class WriteCancelled(ProfileSyncError):
    """A pending remote write was cancelled before it was acknowledged."""

    pass
