"""Exception hierarchy for fieldsync.

All exceptions inherit from :class:`FieldsyncError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`fieldsync.exit_codes`.
Inside the engine most of these are recovered locally: a
:class:`NetworkError` is turned into a cached or offline response by the
strategies, a :class:`QuotaExceeded` during a cache write only costs the
write, and a :class:`MaxRetriesExceeded` is logged and broadcast by the
sync coordinator rather than raised to a caller.

A cache miss is not an exception; lookups return ``None``.

Subclass hierarchy::

    FieldsyncError          (exit 1)
    +-- InvalidUsageError   (exit 2)
    +-- ConfigError         (exit 1)
    +-- NetworkError        (exit 6)
    +-- QuotaExceeded       (exit 7)
    +-- QueueError          (exit 7)
    +-- MaxRetriesExceeded  (exit 8)
"""

from __future__ import annotations

from typing import Optional

from fieldsync.exit_codes import (
    EXIT_GENERIC_FAILURE,
    EXIT_INVALID_USAGE,
    EXIT_NETWORK_ERROR,
    EXIT_STORAGE_ERROR,
    EXIT_SYNC_FAILURE,
)


class FieldsyncError(Exception):
    """Base exception for all fieldsync errors.

    Args:
        message: Human-readable error description.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class InvalidUsageError(FieldsyncError):
    """Raised for invalid CLI arguments or malformed control messages."""

    exit_code = EXIT_INVALID_USAGE


class ConfigError(FieldsyncError):
    """Raised for configuration problems (invalid JSON, failed validation)."""

    exit_code = EXIT_GENERIC_FAILURE


class NetworkError(FieldsyncError):
    """Raised when a fetch is rejected or exceeds its timeout."""

    exit_code = EXIT_NETWORK_ERROR


class QuotaExceeded(FieldsyncError):
    """Raised when the persistent blob store refuses a write."""

    exit_code = EXIT_STORAGE_ERROR


class QueueError(FieldsyncError):
    """Raised when the persistent mutation queue cannot be read or written."""

    exit_code = EXIT_STORAGE_ERROR


class MaxRetriesExceeded(FieldsyncError):
    """Terminal failure of a single queued mutation.

    Attributes:
        mutation_id: Identifier of the dropped queue item.
        attempts: Number of replay attempts made.
        last_error: Description of the final failure, if known.
    """

    exit_code = EXIT_SYNC_FAILURE

    def __init__(self, mutation_id: int, attempts: int, last_error: Optional[str] = None):
        message = f"Mutation {mutation_id} dropped after {attempts} attempts"
        if last_error:
            message = f"{message}: {last_error}"
        super().__init__(message)
        self.mutation_id = mutation_id
        self.attempts = attempts
        self.last_error = last_error
