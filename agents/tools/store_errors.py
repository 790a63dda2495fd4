"""
Shared Store Error Types — Structured exception hierarchy.

The store never retries. These let callers tell a dropped connection
from a rejected credential when they log and surface the failure; in
every case nothing was applied, so the caller's prior state stands.
"""


class StoreError(Exception):
    """Base class for all shared-store and blob-store errors."""
    pass


class StoreConnectionError(StoreError):
    """Backend unreachable or returned a server error (5xx)."""
    pass


class StoreTimeoutError(StoreError):
    """Request timed out waiting for the backend."""
    pass


class StoreAuthError(StoreError):
    """Credential rejected or rules denied the path (401/403)."""
    pass


class StoreNotFoundError(StoreError):
    """The addressed blob or path does not exist (404)."""
    pass
