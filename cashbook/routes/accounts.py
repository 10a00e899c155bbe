"""Account API routes."""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List

from cashbook.database import get_db
from cashbook.errors import LedgerError
from cashbook.routes.errors import to_http_exception
from cashbook.schemas.ledger import AccountCreate, AccountResponse
from cashbook.services.accounts import AccountService

router = APIRouter()


@router.post("", response_model=AccountResponse)
async def create_account(
    data: AccountCreate,
    user_id: str = Query(...),
    db: AsyncSession = Depends(get_db)
):
    """Create an account with a zero balance."""
    try:
        return await AccountService(db).create_account(user_id=user_id, **data.model_dump())
    except LedgerError as e:
        raise to_http_exception(e)


@router.get("", response_model=List[AccountResponse])
async def list_accounts(
    user_id: str = Query(...),
    include_hidden: bool = Query(True),
    db: AsyncSession = Depends(get_db)
):
    """List a user's accounts with their cached balances."""
    return await AccountService(db).list_accounts(user_id, include_hidden=include_hidden)


@router.get("/{account_id}", response_model=AccountResponse)
async def get_account(
    account_id: str,
    user_id: str = Query(...),
    db: AsyncSession = Depends(get_db)
):
    try:
        return await AccountService(db).get_account(account_id, user_id)
    except LedgerError as e:
        raise to_http_exception(e)


@router.delete("/{account_id}")
async def delete_account(
    account_id: str,
    user_id: str = Query(...),
    db: AsyncSession = Depends(get_db)
):
    """Delete an account nothing references."""
    try:
        await AccountService(db).delete_account(account_id, user_id)
    except LedgerError as e:
        raise to_http_exception(e)

    return {"message": "Account deleted successfully"}
