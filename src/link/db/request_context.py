"""
Link - Per-request identity.

The API's auth dependency records who is calling; the store layer reads
the access token back so remote calls run as that user (row-level
security) instead of as the anonymous client.
"""

from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Iterator


@dataclass(frozen=True)
class RequestIdentity:
    user_id: str
    access_token: str


_identity: ContextVar[RequestIdentity | None] = ContextVar("link_request_identity", default=None)


def set_request_context(access_token: str, user_id: str) -> None:
    """Record the authenticated caller for the current request."""
    _identity.set(RequestIdentity(user_id=user_id, access_token=access_token))


def get_access_token() -> str | None:
    identity = _identity.get()
    return identity.access_token if identity else None


def get_current_user_id() -> str | None:
    identity = _identity.get()
    return identity.user_id if identity else None


def clear_request_context() -> None:
    _identity.set(None)


@contextmanager
def request_context(access_token: str, user_id: str) -> Iterator[RequestIdentity]:
    """Scope an identity to a block (CLI tools, background jobs, tests)."""
    identity = RequestIdentity(user_id=user_id, access_token=access_token)
    token = _identity.set(identity)
    try:
        yield identity
    finally:
        _identity.reset(token)
