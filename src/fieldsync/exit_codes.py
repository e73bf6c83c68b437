"""Numeric process exit codes used by the ``fieldsync`` CLI.

Each constant maps to an error category and is referenced by the
corresponding :class:`~fieldsync.exceptions.FieldsyncError` subclass.
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred."""

EXIT_INVALID_USAGE = 2
"""The command was invoked with invalid arguments."""

EXIT_NETWORK_ERROR = 6
"""A network-level error occurred (timeout, DNS failure, connection refused)."""

EXIT_STORAGE_ERROR = 7
"""The persistent cache or queue store rejected a write."""

EXIT_SYNC_FAILURE = 8
"""A queued mutation exhausted its retry budget."""
