"""Domain error taxonomy.

Validation and not-found errors are caller mistakes and are never retried.
Storage errors wrap failures of the persistence collaborator.
"""


class SpacedeckError(Exception):
    """Base class for every error raised by spacedeck."""


class ValidationError(SpacedeckError):
    """Input rejected before any engine call (bad rating, bad limit, ...)."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class NotFoundError(SpacedeckError):
    """A deck or card does not exist or is not visible to the requesting user."""


class StorageError(SpacedeckError):
    """The storage collaborator failed to read or write."""
