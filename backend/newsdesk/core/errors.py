"""
Error types shared by the store, cleanup and session layers.
"""


class NewsdeskError(Exception):
    """Base class for errors the HTTP layer translates into JSON responses."""
    pass


class StoreConnectionError(NewsdeskError, ConnectionError):
    """Relational store unreachable, connection terminated or retries exhausted."""
    pass


class TransactionError(NewsdeskError):
    """A statement failed mid-transaction and the transaction was rolled back."""
    pass


class HistoryWriteError(NewsdeskError):
    """Cleanup or scheduler audit row could not be written. Logged, never raised to callers."""
    pass


class SessionStoreError(NewsdeskError):
    """A session could not be loaded, saved, touched or destroyed."""
    pass
