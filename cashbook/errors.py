"""
Typed failures raised by the ledger core.

Every failure carries a human-readable message. The HTTP layer maps each type
to a status code, so callers can tell apart:

- nothing happened (InvalidArgumentError, NotFoundError)
- an inconsistency was detected and repaired (AmbiguousStateError)
- the store rejected the transaction (StorageFailureError)
"""
from typing import Iterable, List, Optional


class LedgerError(Exception):
    """Base class for all ledger failures."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(LedgerError):
    """Referenced account, transfer or flow does not exist or is not the user's."""


class InvalidArgumentError(LedgerError):
    """Request rejected before any write took place."""


class AmbiguousStateError(LedgerError):
    """
    The ledger was found in a state the operation cannot resolve on its own.

    Raised when a transfer's two halves cannot both be located, or when a
    duplicate group has no unambiguous canonical record. Accounts listed in
    ``repaired_account_ids`` have been recomputed from their ledger entries.
    """

    def __init__(self, message: str, repaired_account_ids: Optional[Iterable[str]] = None):
        super().__init__(message)
        self.repaired_account_ids: List[str] = sorted(set(repaired_account_ids or []))


class StorageFailureError(LedgerError):
    """The underlying transaction aborted; no partial write occurred."""
