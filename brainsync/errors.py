"""
Error taxonomy and error logging for brainsync.

Read paths recover from these locally; write paths hand them back inside a
WriteResult. The CLI logs full stack traces while showing clean messages.
"""

import os
import traceback
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional


class SyncError(Exception):
    """Base class for all brainsync errors."""


class RemoteError(SyncError):
    """The remote document store failed an operation."""


class RemoteUnavailable(RemoteError):
    """The remote store could not be reached (network or connectivity)."""


class RemoteRejected(RemoteError):
    """The remote store answered with an error status."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class NotFound(SyncError):
    """Document is absent from the store that was asked."""

    def __init__(self, collection: str, document_id: str):
        super().__init__(f"Document {document_id} not found in {collection}")
        self.collection = collection
        self.document_id = document_id


class RetryExhausted(SyncError):
    """The backoff executor gave up.

    Carries the last error raised by the wrapped operation and the number
    of attempts made. The last error is also chained as ``__cause__``.
    """

    def __init__(self, key: str, attempts: int, last_error: BaseException):
        super().__init__(
            f"{key}: gave up after {attempts} attempt{'s' if attempts != 1 else ''}: {last_error}"
        )
        self.key = key
        self.attempts = attempts
        self.last_error = last_error


class BatchCommitFailed(SyncError):
    """An atomic batch commit was rejected; writes were retried one by one."""

    def __init__(self, size: int, cause: BaseException):
        super().__init__(f"Batch commit of {size} operations failed: {cause}")
        self.size = size
        self.cause = cause


def _error_log_path() -> Path:
    """Resolve error log path, respecting BRAINSYNC_HOME."""
    home = os.environ.get("BRAINSYNC_HOME")
    if home:
        return Path(home) / "brainsync-errors.log"
    return Path.home() / ".brainsync" / "brainsync-errors.log"


def log_exception(exc: Exception, context: str = "") -> Path:
    """
    Log exception with full traceback to file.

    Args:
        exc: The exception that occurred
        context: Optional context string (e.g., command name)

    Returns:
        Path to the error log file
    """
    log_path = _error_log_path()
    timestamp = datetime.now(timezone.utc).isoformat()
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(log_path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
        with os.fdopen(fd, "a") as f:
            f.write(f"\n{'='*60}\n")
            f.write(f"[{timestamp}]")
            if context:
                f.write(f" {context}")
            f.write("\n")
            f.write("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)))
    except OSError:
        pass  # Can't write error log; don't crash over it
    return log_path
