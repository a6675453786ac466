"""
Link - Remote profile store.

Supabase-backed document store plus the protocol the sync engine codes against.
"""

from link.db.adapter import ChangeSubscription, DocumentStore
from link.db.client import SupabaseDocumentStore, get_client

__all__ = [
    "ChangeSubscription",
    "DocumentStore",
    "SupabaseDocumentStore",
    "get_client",
]
