"""
Store failure taxonomy.

The retry controller decides on ``StoreErrorKind`` only. Everything that
inspects driver exception types, status codes or message text lives in
``classify_store_error`` so it can change without touching the retry logic.
"""

from enum import Enum
from typing import Optional

from neo4j.exceptions import (
    ConstraintError,
    ServiceUnavailable,
    SessionExpired,
    TransientError,
)


class StoreErrorKind(str, Enum):
    CONFLICT = "conflict"
    CONSTRAINT_VIOLATION = "constraint_violation"
    CONNECTION_LOST = "connection_lost"
    OTHER = "other"


class StoreWriteError(Exception):
    """A batch write failed; ``kind`` says whether retrying can help."""

    def __init__(self, kind: StoreErrorKind, cause: Optional[BaseException] = None):
        self.kind = kind
        self.cause = cause
        message = f"{kind.value}: {cause}" if cause is not None else kind.value
        super().__init__(message)


# Lower-cased fragments of codes/messages reported for lock contention
CONFLICT_SIGNATURES = (
    "deadlockdetected",
    "deadlock",
    "transactionterminated",
    "transaction.terminated",
    "lockclientstopped",
    "lockacquisitiontimeout",
    "concurrent access",
)

CONSTRAINT_CODE = "Neo.ClientError.Schema.ConstraintValidationFailed"


def classify_store_error(exc: BaseException) -> StoreErrorKind:
    """Map a driver (or adapter) exception onto a StoreErrorKind."""
    if isinstance(exc, StoreWriteError):
        return exc.kind

    code = getattr(exc, "code", None) or ""
    message = getattr(exc, "message", None) or ""
    text = " ".join(
        [code, message, type(exc).__name__, str(exc), *map(str, exc.args)]
    ).lower()

    if any(signature in text for signature in CONFLICT_SIGNATURES):
        return StoreErrorKind.CONFLICT
    if isinstance(exc, TransientError) and code.startswith(
        "Neo.TransientError.Transaction."
    ):
        return StoreErrorKind.CONFLICT
    if isinstance(exc, ConstraintError) or code == CONSTRAINT_CODE:
        return StoreErrorKind.CONSTRAINT_VIOLATION
    if isinstance(exc, (ServiceUnavailable, SessionExpired, ConnectionError, OSError)):
        return StoreErrorKind.CONNECTION_LOST
    return StoreErrorKind.OTHER
