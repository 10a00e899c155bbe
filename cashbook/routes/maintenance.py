"""Ledger health and maintenance API routes."""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from cashbook.database import get_db
from cashbook.errors import LedgerError
from cashbook.routes.errors import to_http_exception
from cashbook.schemas.reports import BalanceCheck, CleanupResult, DriftReport, IntegrityReport, RecalcResult
from cashbook.services.accounts import AccountService
from cashbook.services.consistency import ConsistencyValidator
from cashbook.services.loans import LoanConsolidationService
from cashbook.services.maintenance import MaintenanceService

router = APIRouter()


@router.get("/balances", response_model=DriftReport)
async def check_balances(
    user_id: str = Query(...),
    db: AsyncSession = Depends(get_db)
):
    """List accounts whose cached balance differs from the ledger. Read-only."""
    return await ConsistencyValidator(db).validate_user_balances(user_id)


@router.get("/balances/{account_id}", response_model=BalanceCheck)
async def check_account_balance(
    account_id: str,
    user_id: str = Query(...),
    db: AsyncSession = Depends(get_db)
):
    try:
        await AccountService(db).get_account(account_id, user_id)
        return await ConsistencyValidator(db).validate_account_balance(account_id)
    except LedgerError as e:
        raise to_http_exception(e)


@router.post("/recalc-balances", response_model=RecalcResult)
async def recalc_balances(
    user_id: str = Query(...),
    db: AsyncSession = Depends(get_db)
):
    """Overwrite every cached balance of the user with the ledger value."""
    try:
        return await LoanConsolidationService(db).recalculate_account_balances(user_id)
    except LedgerError as e:
        raise to_http_exception(e)


@router.get("/transfers/integrity", response_model=IntegrityReport)
async def check_transfer_integrity(
    user_id: str = Query(...),
    db: AsyncSession = Depends(get_db)
):
    return await ConsistencyValidator(db).check_transfer_integrity(user_id)


@router.post("/cleanup", response_model=CleanupResult)
async def cleanup(
    user_id: str = Query(...),
    confirm: bool = Query(False),
    db: AsyncSession = Depends(get_db)
):
    """Delete orphaned, dangling and malformed transfer records. Requires confirm=true."""
    try:
        return await MaintenanceService(db).cleanup(user_id, confirm=confirm)
    except LedgerError as e:
        raise to_http_exception(e)
