"""
Consolidated models package.

IMPORTANT: Explicit imports only - no wildcards to prevent circular imports.
"""

# Base utilities
from cashbook.models.base import generate_id, to_money

# Ledger models
from cashbook.models.ledger import (
    FlowType,
    TransferType,
    LoanType,
    LOAN_TYPES,
    Account,
    Flow,
    Transfer,
)


__all__ = [
    # Utilities
    "generate_id",
    "to_money",
    # Ledger
    "FlowType",
    "TransferType",
    "LoanType",
    "LOAN_TYPES",
    "Account",
    "Flow",
    "Transfer",
]
