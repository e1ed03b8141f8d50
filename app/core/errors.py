from __future__ import annotations


class SlotSyncError(Exception):
    """Base class for domain errors raised by the sync engine."""


class TransientStoreError(SlotSyncError):
    """A store write failed in a way that is expected to succeed on retry."""


class InvariantViolation(SlotSyncError):
    """Persisted state contradicts an invariant. Never auto-corrected; the
    offending event is dead-lettered and an operator alarm fires."""


class ListingNotFound(SlotSyncError):
    def __init__(self, listing_id: str):
        super().__init__(f"listing {listing_id} not found")
        self.listing_id = listing_id


class PreconditionFailed(SlotSyncError):
    """Listing is not in a publishable shape (status, location, images)."""


class EntitlementDeclined(SlotSyncError):
    """Publishing is refused by the host's plan. Expected business outcome."""

    def __init__(self, reason: str, message: str):
        super().__init__(message)
        self.reason = reason
        self.message = message


class EntitlementConflict(SlotSyncError):
    """A concurrent publish for the same host consumed capacity between our
    read and our conditional write."""


class HostNotYetKnown(TransientStoreError):
    """Event refers to a provider customer not linked to any host yet, usually
    because the checkout event has not been applied. Retried."""
