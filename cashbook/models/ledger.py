"""Ledger models: Account, Flow, Transfer."""
from enum import Enum

from sqlalchemy import Column, String, DateTime, Date, Numeric, Boolean, Text, ForeignKey, Index, CheckConstraint

from cashbook.database import Base
from cashbook.models.base import generate_id, utcnow


class FlowType(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"


class TransferType(str, Enum):
    TRANSFER = "transfer"
    LOAN = "loan"


class LoanType(str, Enum):
    BORROW = "borrow"
    LEND = "lend"
    COLLECT = "collect"
    REPAY = "repay"


LOAN_TYPES = tuple(t.value for t in LoanType)


class Account(Base):
    """Account model - a monetary bucket owned by one user."""

    __tablename__ = "accounts"

    id = Column(String, primary_key=True, default=lambda: generate_id("acct"))
    user_id = Column(String, nullable=False, index=True)

    name = Column(String, nullable=False)
    account_type = Column(String, nullable=False, default="cash")  # "cash" | "bank" | "credit" | "other"
    currency = Column(String, nullable=False, default="CNY")

    # Cached, denormalized value. BalanceReconciler defines what it should be.
    balance = Column(Numeric(precision=15, scale=2), nullable=False, default=0)

    include_in_net_worth = Column(Boolean, nullable=False, default=True)
    hidden = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=utcnow)

    def __repr__(self):
        return f"<Account {self.id}: {self.name} balance={self.balance}>"


class Flow(Base):
    """
    Flow model - a single ledger entry.

    Contributes +amount (income) or -amount (expense) to its account, whether or
    not it is eliminated from reporting. A flow with a transfer_id is one half of
    a Transfer and is only ever written through UnifiedTransferService.
    """

    __tablename__ = "flows"

    id = Column(String, primary_key=True, default=lambda: generate_id("flow"))
    user_id = Column(String, nullable=False, index=True)
    book_id = Column(String, nullable=False, index=True)

    day = Column(Date, nullable=False)
    flow_type = Column(String, nullable=False)  # "income" | "expense"
    category = Column(String, nullable=False, default="")
    pay_type = Column(String, nullable=False, default="")
    amount = Column(Numeric(precision=15, scale=2), nullable=False)
    name = Column(String, nullable=False, default="")
    description = Column(Text, nullable=True)

    # Null means the entry does not move account money (e.g. unclassified import)
    account_id = Column(String, ForeignKey("accounts.id", ondelete="RESTRICT"), nullable=True, index=True)

    # No FK: legacy data may carry references to transfers that no longer exist
    transfer_id = Column(String, nullable=True, index=True)

    # Excluded from income/expense aggregates, still affects balance
    eliminate = Column(Boolean, nullable=False, default=False)

    # Legacy loan tagging on unpaired flows
    loan_type = Column(String, nullable=True)  # "borrow" | "lend" | "collect" | "repay"
    counterparty = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_flows_amount_non_negative"),
        Index("ix_flows_user_transfer", "user_id", "transfer_id"),
    )

    def __repr__(self):
        return f"<Flow {self.id}: {self.flow_type} {self.amount} acct={self.account_id} xfer={self.transfer_id}>"


class Transfer(Base):
    """Transfer model - a paired money movement owning exactly two flows."""

    __tablename__ = "transfers"

    id = Column(String, primary_key=True, default=lambda: generate_id("xfer"))
    user_id = Column(String, nullable=False, index=True)
    book_id = Column(String, nullable=True)

    day = Column(Date, nullable=False)
    from_account_id = Column(String, ForeignKey("accounts.id", ondelete="RESTRICT"), nullable=False, index=True)
    to_account_id = Column(String, ForeignKey("accounts.id", ondelete="RESTRICT"), nullable=False, index=True)
    amount = Column(Numeric(precision=15, scale=2), nullable=False)

    transfer_type = Column(String, nullable=False, default=TransferType.TRANSFER.value)  # "transfer" | "loan"
    loan_type = Column(String, nullable=True)
    counterparty = Column(String, nullable=True)

    name = Column(String, nullable=True)
    description = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_transfers_amount_positive"),
        CheckConstraint("from_account_id <> to_account_id", name="ck_transfers_distinct_accounts"),
    )

    @property
    def is_loan(self) -> bool:
        return self.transfer_type == TransferType.LOAN.value

    def __repr__(self):
        return f"<Transfer {self.id}: {self.from_account_id} -> {self.to_account_id} {self.amount}>"
