"""Error kinds raised across the finance tracker.

Remote-facing errors (AuthFailure, RemoteUnavailable) are absorbed by the
SyncCoordinator. Only LocalWriteFailure and MalformedImport reach callers
of FinancialStore, plus NotFound for unknown ids.
"""


class FinanceTrackerError(Exception):
    """Base class for all finance tracker errors."""


class AuthFailure(FinanceTrackerError):
    """Remote identity could not be established."""


class RemoteUnavailable(FinanceTrackerError):
    """A remote read or write failed (network, HTTP error, bad payload)."""


class LocalWriteFailure(FinanceTrackerError):
    """The local cache rejected a write (disk full, locked, unserializable)."""

    def __init__(self, dataset: str, reason: str = ""):
        self.dataset = dataset
        self.reason = reason
        message = f"Failed to write '{dataset}' to local cache"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class MalformedImport(FinanceTrackerError):
    """An import payload is not a well-formed snapshot. Nothing was applied."""


class NotFound(FinanceTrackerError, KeyError):
    """No entity with the given id."""

    def __init__(self, kind: str, entity_id):
        self.kind = kind
        self.entity_id = entity_id
        super().__init__(f"{kind} {entity_id} not found")

    def __str__(self) -> str:
        return self.args[0]


class AmbiguousGroup(UserWarning):
    """Description-inferred recurring group swept in entries with no recurrence evidence."""
