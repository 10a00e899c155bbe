"""Transfer API routes - account transfers and loan movements."""
from datetime import date
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from cashbook.database import get_db
from cashbook.errors import LedgerError
from cashbook.routes.errors import to_http_exception
from cashbook.schemas.ledger import TransferCreate, TransferPage, TransferResponse, TransferUpdate
from cashbook.services.transfers import UnifiedTransferService

router = APIRouter()


@router.post("", response_model=TransferResponse)
async def create_transfer(
    data: TransferCreate,
    user_id: str = Query(...),
    db: AsyncSession = Depends(get_db)
):
    """Create a transfer and both of its flows."""
    try:
        return await UnifiedTransferService(db).create_transfer(user_id=user_id, **data.model_dump())
    except LedgerError as e:
        raise to_http_exception(e)


@router.get("", response_model=TransferPage)
async def list_transfers(
    user_id: str = Query(...),
    transfer_type: Optional[str] = Query(None),
    start_day: Optional[date] = Query(None),
    end_day: Optional[date] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db)
):
    """List transfers, newest first."""
    try:
        return await UnifiedTransferService(db).list_transfers(
            user_id,
            transfer_type=transfer_type,
            start_day=start_day,
            end_day=end_day,
            page=page,
            page_size=page_size,
        )
    except LedgerError as e:
        raise to_http_exception(e)


@router.get("/{transfer_id}", response_model=TransferResponse)
async def get_transfer(
    transfer_id: str,
    user_id: str = Query(...),
    db: AsyncSession = Depends(get_db)
):
    try:
        return await UnifiedTransferService(db).get_transfer(transfer_id, user_id)
    except LedgerError as e:
        raise to_http_exception(e)


@router.put("/{transfer_id}", response_model=TransferResponse)
async def update_transfer(
    transfer_id: str,
    data: TransferUpdate,
    user_id: str = Query(...),
    db: AsyncSession = Depends(get_db)
):
    """Update a transfer (the old pair is unwound and the new one applied)."""
    try:
        return await UnifiedTransferService(db).update_transfer(
            transfer_id, user_id, **data.model_dump(exclude_unset=True)
        )
    except LedgerError as e:
        raise to_http_exception(e)


@router.delete("/{transfer_id}")
async def delete_transfer(
    transfer_id: str,
    user_id: str = Query(...),
    db: AsyncSession = Depends(get_db)
):
    """Delete a transfer with both halves."""
    try:
        await UnifiedTransferService(db).delete_transfer(transfer_id, user_id)
    except LedgerError as e:
        raise to_http_exception(e)

    return {"message": "Transfer deleted successfully"}
