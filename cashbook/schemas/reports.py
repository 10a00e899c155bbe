"""Pydantic schemas for reconciliation, validation and maintenance results."""
from pydantic import BaseModel, Field
from typing import Optional, List
from decimal import Decimal

from cashbook.schemas.ledger import FlowSummary, TransferSummary


# ============================================================================
# BALANCES
# ============================================================================

class BalanceCheck(BaseModel):
    """Stored vs. computed balance for one account."""
    account_id: str
    account_name: Optional[str] = None
    stored_balance: Decimal
    computed_balance: Decimal
    difference: Decimal
    is_valid: bool


class DriftReport(BaseModel):
    """Accounts whose cached balance has drifted from the ledger."""
    user_id: str
    total_accounts: int
    drifted_count: int
    drifted: List[BalanceCheck] = Field(default_factory=list)


class BalanceChange(BaseModel):
    account_id: str
    old_balance: Decimal
    new_balance: Decimal


class RecalcResult(BaseModel):
    """Outcome of an unconditional balance recomputation."""
    total: int
    updated: int
    changed: List[BalanceChange] = Field(default_factory=list)


# ============================================================================
# LOANS
# ============================================================================

class LoanValidationResult(BaseModel):
    """Pending loan repair work for a user."""
    unlinked_loan_flows: List[FlowSummary] = Field(default_factory=list)
    linked_loan_flows: List[FlowSummary] = Field(default_factory=list)
    invalid_transfers: List[FlowSummary] = Field(default_factory=list)
    needs_processing: bool


class ProcessResult(BaseModel):
    """Outcome of converting legacy loan flows into transfers."""
    total: int
    success: int
    error: int
    created_transfer_ids: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    recalc: Optional[RecalcResult] = None


class ConsolidationResult(BaseModel):
    """Outcome of merging duplicate loan transfers."""
    groups: int
    total_merged: int
    created_transfers: int
    errors: List[str] = Field(default_factory=list)
    recalc: Optional[RecalcResult] = None


class LoanStatisticsRow(BaseModel):
    flow_type: str
    category: str
    pay_type: str
    count: int
    amount: Decimal


class LoanStatistics(BaseModel):
    total_count: int
    total_amount: Decimal
    breakdown: List[LoanStatisticsRow] = Field(default_factory=list)


# ============================================================================
# TRANSFER INTEGRITY / MAINTENANCE
# ============================================================================

class MalformedTransfer(BaseModel):
    """A transfer whose linked flows break the two-halves invariant."""
    transfer: TransferSummary
    flows: List[FlowSummary] = Field(default_factory=list)
    reason: str


class IntegrityReport(BaseModel):
    total_transfers: int
    orphaned_transfers: List[TransferSummary] = Field(default_factory=list)
    dangling_flows: List[FlowSummary] = Field(default_factory=list)
    malformed_transfers: List[MalformedTransfer] = Field(default_factory=list)
    is_consistent: bool


class CleanupResult(BaseModel):
    deleted_transfer_ids: List[str] = Field(default_factory=list)
    deleted_flow_ids: List[str] = Field(default_factory=list)
    repaired_account_ids: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
