"""
Sync error taxonomy.

Transport and conflict errors are recovered by the engine and show up as
status changes. Backup validation errors go back to whoever imported.
"""


class SyncError(Exception):
    """Base class for remote sync failures."""


class TransportError(SyncError):
    """Network unreachable, timeout, or a non-2xx answer."""


class ConflictError(SyncError):
    """The remote blob moved since the version token we hold."""


class BackupValidationError(ValueError):
    """A backup snapshot is malformed or lacks mandatory datasets."""
