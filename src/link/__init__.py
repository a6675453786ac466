"""
Link - Profile completion and signup progress engine.

Scores profile documents against the field catalog, tracks the signup
stage machine, and keeps a local cache consistent with the remote store.
"""

__version__ = "1.0.0"
