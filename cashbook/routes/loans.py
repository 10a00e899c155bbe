"""Loan consolidation API routes (administrative)."""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from cashbook.database import get_db
from cashbook.schemas.reports import (
    ConsolidationResult,
    LoanStatistics,
    LoanValidationResult,
    ProcessResult,
)
from cashbook.services.loans import LoanConsolidationService

router = APIRouter()


@router.get("/validate", response_model=LoanValidationResult)
async def validate_loans(
    user_id: str = Query(...),
    db: AsyncSession = Depends(get_db)
):
    """Report unlinked loan flows and flows pointing at missing transfers."""
    return await LoanConsolidationService(db).validate_consistency(user_id)


@router.post("/process", response_model=ProcessResult)
async def process_loan_flows(
    user_id: str = Query(...),
    db: AsyncSession = Depends(get_db)
):
    """
    Convert legacy loan flow pairs into loan transfers.

    Pairs that cannot be converted are listed in `errors`; the rest are committed.
    """
    return await LoanConsolidationService(db).process_all_loan_flows(user_id)


@router.post("/consolidate", response_model=ConsolidationResult)
async def consolidate_loans(
    user_id: str = Query(...),
    db: AsyncSession = Depends(get_db)
):
    """Merge duplicate loan transfers onto their earliest record."""
    return await LoanConsolidationService(db).consolidate_duplicate_loan_records(user_id)


@router.get("/statistics", response_model=LoanStatistics)
async def loan_statistics(
    user_id: str = Query(...),
    db: AsyncSession = Depends(get_db)
):
    return await LoanConsolidationService(db).get_loan_flow_statistics(user_id)
