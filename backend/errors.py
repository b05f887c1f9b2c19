"""Exceptions and failure reasons shared by the stores, auth and pipeline."""

from enum import Enum


class ErrorKind(str, Enum):
    """How a backing-store failure should be treated by the retry loop."""

    TRANSIENT = "transient"   # rate limited / temporarily unavailable: retry
    CONFLICT = "conflict"     # unique or FK violation
    FATAL = "fatal"           # anything else: propagate immediately


class JournalError(Exception):
    """Base class for errors this app raises on purpose."""

    status_code = 500
    public_message = "Something went wrong"


class StoreError(JournalError):
    """The database rejected or failed an operation."""

    public_message = "The journal store is unavailable. Please try again."

    def __init__(self, kind, message="", original=None):
        super().__init__(message or kind.value)
        self.kind = kind
        self.original = original


class CreationFailed(JournalError):
    public_message = "Failed to create user account"


class InvalidCode(JournalError):
    status_code = 401
    public_message = "Invalid login ID. Please check and try again."


class FailureReason(str, Enum):
    """Terminal states of a failed entry submission."""

    NOT_AUTHENTICATED = "not_authenticated"
    EMPTY_ENTRY = "empty_entry"
    INVALID_ENTRY = "invalid_entry"
    STORE_ERROR = "store_error"
    INSERT_RETURNED_EMPTY = "insert_returned_empty"
    VERIFICATION_MISMATCH = "verification_mismatch"


# (HTTP status, message shown to the user). Store internals never leak here.
FAILURE_RESPONSES = {
    FailureReason.NOT_AUTHENTICATED: (401, "Please log in to save journal entries."),
    FailureReason.EMPTY_ENTRY: (400, "Please write something before saving your journal entry."),
    FailureReason.INVALID_ENTRY: (400, "Journal entries must be text."),
    FailureReason.STORE_ERROR: (500, "Failed to save journal entry."),
    FailureReason.INSERT_RETURNED_EMPTY: (500, "Failed to save journal entry."),
    FailureReason.VERIFICATION_MISMATCH: (500, "Failed to save journal entry."),
}
