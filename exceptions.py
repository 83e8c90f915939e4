"""Errors raised by the contact ledger."""


class IdentityReconciliationError(Exception):
    """Base class for contact ledger failures."""


class InvariantViolationError(IdentityReconciliationError):
    """The stored contact graph is not in a consistent shape.

    Raised for a linked group without a primary, a merge without any
    primary, or a secondary whose primary cannot be found.
    """


class StoreContentionError(IdentityReconciliationError):
    """The ledger write lock could not be obtained within the retry budget."""

    def __init__(self, attempts: int):
        super().__init__(f"Contact store is busy after {attempts} attempts")
        self.attempts = attempts


class StoreUnavailableError(IdentityReconciliationError):
    """The contact store could not be reached or queried."""
