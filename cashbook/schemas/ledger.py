"""Pydantic schemas for accounts, flows and transfers."""
from pydantic import BaseModel, Field
from datetime import date, datetime
from typing import Optional, List
from decimal import Decimal


# ============================================================================
# ACCOUNTS
# ============================================================================

class AccountCreate(BaseModel):
    """Schema for creating an account."""
    name: str = Field(..., min_length=1, max_length=255)
    account_type: str = "cash"
    currency: str = Field(default="CNY", pattern="^[A-Z]{3}$")
    include_in_net_worth: bool = True
    hidden: bool = False


class AccountResponse(BaseModel):
    """Schema for account response."""
    id: str
    user_id: str
    name: str
    account_type: str
    currency: str
    balance: Decimal
    include_in_net_worth: bool
    hidden: bool
    created_at: datetime
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


# ============================================================================
# FLOWS
# ============================================================================

class FlowCreate(BaseModel):
    """Schema for a freestanding income/expense entry."""
    book_id: str
    day: date
    flow_type: str
    amount: Decimal
    category: str = ""
    pay_type: str = ""
    account_id: Optional[str] = None
    name: str = ""
    description: Optional[str] = None
    eliminate: bool = False
    loan_type: Optional[str] = None
    counterparty: Optional[str] = None


class FlowUpdate(BaseModel):
    """Schema for updating a freestanding entry (only provided fields change)."""
    day: Optional[date] = None
    flow_type: Optional[str] = None
    amount: Optional[Decimal] = None
    category: Optional[str] = None
    pay_type: Optional[str] = None
    account_id: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    eliminate: Optional[bool] = None


class FlowResponse(BaseModel):
    """Schema for flow response."""
    id: str
    user_id: str
    book_id: str
    day: date
    flow_type: str
    category: str
    pay_type: str
    amount: Decimal
    name: str
    description: Optional[str] = None
    account_id: Optional[str] = None
    transfer_id: Optional[str] = None
    eliminate: bool
    loan_type: Optional[str] = None
    counterparty: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class FlowSummary(BaseModel):
    """Detached snapshot of a flow, safe to hold across transactions."""
    id: str
    book_id: str
    day: date
    flow_type: str
    amount: Decimal
    category: str = ""
    pay_type: str = ""
    account_id: Optional[str] = None
    transfer_id: Optional[str] = None
    loan_type: Optional[str] = None
    counterparty: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}


# ============================================================================
# TRANSFERS
# ============================================================================

class TransferCreate(BaseModel):
    """Schema for creating a transfer or loan movement."""
    book_id: str
    day: date
    from_account_id: str
    to_account_id: str
    amount: Decimal
    transfer_type: str = "transfer"
    loan_type: Optional[str] = None
    counterparty: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None


class TransferUpdate(BaseModel):
    """Schema for updating a transfer (only provided fields change)."""
    book_id: Optional[str] = None
    day: Optional[date] = None
    from_account_id: Optional[str] = None
    to_account_id: Optional[str] = None
    amount: Optional[Decimal] = None
    transfer_type: Optional[str] = None
    loan_type: Optional[str] = None
    counterparty: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None


class TransferResponse(BaseModel):
    """Schema for transfer response."""
    id: str
    user_id: str
    book_id: Optional[str] = None
    day: date
    from_account_id: str
    to_account_id: str
    amount: Decimal
    transfer_type: str
    loan_type: Optional[str] = None
    counterparty: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class TransferSummary(BaseModel):
    """Detached snapshot of a transfer, safe to hold across transactions."""
    id: str
    book_id: Optional[str] = None
    day: date
    from_account_id: str
    to_account_id: str
    amount: Decimal
    transfer_type: str
    loan_type: Optional[str] = None
    counterparty: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class TransferPage(BaseModel):
    """Paginated transfer listing."""
    data: List[TransferResponse]
    total: int
    page: int
    page_size: int
    total_pages: int
