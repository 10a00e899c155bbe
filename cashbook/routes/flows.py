"""Flow API routes - freestanding income and expense entries."""
from datetime import date
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional

from cashbook.database import get_db
from cashbook.errors import LedgerError
from cashbook.routes.errors import to_http_exception
from cashbook.schemas.ledger import FlowCreate, FlowResponse, FlowUpdate
from cashbook.services.flows import FlowService

router = APIRouter()


@router.post("", response_model=FlowResponse)
async def create_flow(
    data: FlowCreate,
    user_id: str = Query(...),
    db: AsyncSession = Depends(get_db)
):
    """Record an income or expense entry."""
    try:
        return await FlowService(db).create_flow(user_id=user_id, **data.model_dump())
    except LedgerError as e:
        raise to_http_exception(e)


@router.get("", response_model=List[FlowResponse])
async def list_flows(
    user_id: str = Query(...),
    book_id: Optional[str] = Query(None),
    account_id: Optional[str] = Query(None),
    start_day: Optional[date] = Query(None),
    end_day: Optional[date] = Query(None),
    limit: int = Query(500, ge=1, le=5000),
    db: AsyncSession = Depends(get_db)
):
    return await FlowService(db).list_flows(
        user_id,
        book_id=book_id,
        account_id=account_id,
        start_day=start_day,
        end_day=end_day,
        limit=limit,
    )


@router.put("/{flow_id}", response_model=FlowResponse)
async def update_flow(
    flow_id: str,
    data: FlowUpdate,
    user_id: str = Query(...),
    db: AsyncSession = Depends(get_db)
):
    """Update a freestanding entry. Transfer halves must be changed through their transfer."""
    try:
        return await FlowService(db).update_flow(flow_id, user_id, **data.model_dump(exclude_unset=True))
    except LedgerError as e:
        raise to_http_exception(e)


@router.delete("/{flow_id}")
async def delete_flow(
    flow_id: str,
    user_id: str = Query(...),
    db: AsyncSession = Depends(get_db)
):
    """Delete an entry. Deleting half of a transfer deletes the whole transfer."""
    try:
        await FlowService(db).delete_flow(flow_id, user_id)
    except LedgerError as e:
        raise to_http_exception(e)

    return {"message": "Flow deleted successfully"}
