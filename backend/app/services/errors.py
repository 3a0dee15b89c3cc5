from __future__ import annotations


class NotFoundError(Exception):
    pass


class StorageError(Exception):
    """Raised when the database rejects or loses a write."""


class EnrichmentError(Exception):
    """Raised by the enrichment gateway for any upstream failure."""


class InvalidTransitionError(Exception):
    def __init__(self, from_status: str, event: str) -> None:
        self.from_status = from_status
        self.event = event
        super().__init__(f"Cannot apply '{event}' to an item in status '{from_status}'")
