"""Error taxonomy for the ATH pipeline.

Every error carries an explicit ``ErrorKind`` assigned where the failure is
raised. Callers branch on ``kind`` (or the exception class), never on the
message text.
"""
from contextlib import contextmanager
from enum import Enum
from typing import Optional

from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError


class ErrorKind(str, Enum):
    """Machine-readable reason codes surfaced to trigger callers."""
    SOURCE_UNAVAILABLE = "source_unavailable"
    SOURCE_MALFORMED = "source_malformed"
    STORE_UNAVAILABLE = "store_unavailable"
    RECORD_INVALID = "record_invalid"
    RECIPIENT_SEND_FAILED = "recipient_send_failed"
    NOT_ENTITLED = "not_entitled"
    USER_NOT_FOUND = "user_not_found"
    CANCELLED = "cancelled"


class PipelineError(Exception):
    """Base class for all pipeline errors."""

    kind: ErrorKind = ErrorKind.STORE_UNAVAILABLE

    def __init__(self, message: str, kind: Optional[ErrorKind] = None):
        super().__init__(message)
        if kind is not None:
            self.kind = kind


class SourceUnavailable(PipelineError):
    """Market-data source could not be reached (network, timeout, 429/5xx)."""
    kind = ErrorKind.SOURCE_UNAVAILABLE


class SourceMalformed(PipelineError):
    """Market-data response could not be read at all."""
    kind = ErrorKind.SOURCE_MALFORMED


class StoreUnavailable(PipelineError):
    """Key-value store connection or timeout failure."""
    kind = ErrorKind.STORE_UNAVAILABLE


class RecordInvalid(PipelineError):
    """A stored record failed validation and was rejected."""
    kind = ErrorKind.RECORD_INVALID

    def __init__(self, key: str, detail: str):
        super().__init__(f"Invalid record at {key}: {detail}")
        self.key = key


class RecipientSendFailed(PipelineError):
    """Sending to one recipient failed. Recorded and swallowed by the dispatcher."""
    kind = ErrorKind.RECIPIENT_SEND_FAILED


class NotEntitled(PipelineError):
    """User does not hold an active subscription."""
    kind = ErrorKind.NOT_ENTITLED


class UserNotFound(PipelineError):
    kind = ErrorKind.USER_NOT_FOUND


class RunCancelled(PipelineError):
    """Cooperative cancellation requested by the trigger."""
    kind = ErrorKind.CANCELLED


@contextmanager
def store_errors(operation: str):
    """Translate Redis connectivity failures into ``StoreUnavailable``."""
    try:
        yield
    except (RedisConnectionError, RedisTimeoutError) as e:
        raise StoreUnavailable(f"Store unavailable during {operation}: {e}") from e
