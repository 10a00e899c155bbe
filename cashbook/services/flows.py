"""
Flow Service - freestanding income and expense entries.

Flows that belong to a transfer are never written here: updates are refused and
deletes are routed through UnifiedTransferService so both halves go together.
"""
import logging
from datetime import date
from typing import Any, List, Optional

from sqlalchemy import select, update, delete
from sqlalchemy.ext.asyncio import AsyncSession

from cashbook.audit.services import AuditService, SourceType, snapshot, FLOW_FIELDS
from cashbook.database import atomic
from cashbook.errors import InvalidArgumentError, NotFoundError
from cashbook.models.ledger import Account, Flow, FlowType, Transfer, LOAN_TYPES
from cashbook.services.transfers import UnifiedTransferService, parse_amount, parse_day

logger = logging.getLogger(__name__)


UPDATABLE_FIELDS = (
    "day", "flow_type", "amount", "category", "pay_type",
    "account_id", "name", "description", "eliminate",
)


def _validate_flow_type(flow_type: str) -> str:
    valid = [t.value for t in FlowType]
    if flow_type not in valid:
        raise InvalidArgumentError(f"Flow type must be one of: {', '.join(valid)}")
    return flow_type


class FlowService:
    """Create, update and delete single ledger entries, keeping balances current."""

    def __init__(self, db: AsyncSession, source: SourceType = "api"):
        self.db = db
        self.source = source
        self.transfers = UnifiedTransferService(db, source=source)

    async def _require_account(self, account_id: str, user_id: str) -> Account:
        account = (await self.db.execute(
            select(Account).where(Account.id == account_id, Account.user_id == user_id)
        )).scalar_one_or_none()
        if not account:
            raise NotFoundError(f"Account {account_id} not found")
        return account

    async def _apply_signed(self, account_id: Optional[str], flow_type: str, amount) -> None:
        if not account_id:
            return
        delta = amount if flow_type == FlowType.INCOME.value else -amount
        await self.db.execute(
            update(Account)
            .where(Account.id == account_id)
            .values(balance=Account.balance + delta)
        )

    async def get_flow(self, flow_id: str, user_id: str) -> Flow:
        flow = (await self.db.execute(
            select(Flow)
            .where(Flow.id == flow_id, Flow.user_id == user_id)
            .execution_options(populate_existing=True)
        )).scalar_one_or_none()
        if not flow:
            raise NotFoundError(f"Flow {flow_id} not found")
        return flow

    async def list_flows(
        self,
        user_id: str,
        book_id: Optional[str] = None,
        account_id: Optional[str] = None,
        start_day: Optional[date] = None,
        end_day: Optional[date] = None,
        limit: int = 500,
    ) -> List[Flow]:
        conditions = [Flow.user_id == user_id]
        if book_id:
            conditions.append(Flow.book_id == book_id)
        if account_id:
            conditions.append(Flow.account_id == account_id)
        if start_day:
            conditions.append(Flow.day >= start_day)
        if end_day:
            conditions.append(Flow.day <= end_day)

        result = await self.db.execute(
            select(Flow)
            .where(*conditions)
            .order_by(Flow.day.desc(), Flow.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def create_flow(
        self,
        user_id: str,
        book_id: str,
        day: Any,
        flow_type: str,
        amount: Any,
        category: str = "",
        pay_type: str = "",
        account_id: Optional[str] = None,
        name: str = "",
        description: Optional[str] = None,
        eliminate: bool = False,
        loan_type: Optional[str] = None,
        counterparty: Optional[str] = None,
    ) -> Flow:
        """Record an income or expense entry and apply it to its account."""
        _validate_flow_type(flow_type)
        amount = parse_amount(amount)
        if amount < 0:
            raise InvalidArgumentError("Flow amount must not be negative")
        if not book_id:
            raise InvalidArgumentError("book_id is required")
        if loan_type and loan_type not in LOAN_TYPES:
            raise InvalidArgumentError(f"Loan type must be one of: {', '.join(LOAN_TYPES)}")
        day = parse_day(day)

        audit = AuditService(self.db, user_id=user_id, source=self.source)
        async with atomic(self.db):
            if account_id:
                await self._require_account(account_id, user_id)

            flow = Flow(
                user_id=user_id,
                book_id=book_id,
                day=day,
                flow_type=flow_type,
                amount=amount,
                category=category or "",
                pay_type=pay_type or "",
                account_id=account_id,
                name=name or "",
                description=description,
                eliminate=eliminate,
                loan_type=loan_type,
                counterparty=counterparty,
            )
            self.db.add(flow)
            await self.db.flush()
            await self._apply_signed(account_id, flow_type, amount)
            await audit.log_create("flow", flow.id, snapshot(flow, FLOW_FIELDS))

        logger.info(f"Created {flow_type} flow {flow.id} ({amount}) on account {account_id}")
        return flow

    async def update_flow(self, flow_id: str, user_id: str, **changes: Any) -> Flow:
        """
        Update a freestanding entry. The old effect is reversed and the new one
        applied in the same transaction.
        """
        unknown = set(changes) - set(UPDATABLE_FIELDS)
        if unknown:
            raise InvalidArgumentError(f"Cannot update flow fields: {', '.join(sorted(unknown))}")

        audit = AuditService(self.db, user_id=user_id, source=self.source)
        async with atomic(self.db):
            flow = await self.get_flow(flow_id, user_id)
            if flow.transfer_id:
                raise InvalidArgumentError(
                    f"Flow {flow_id} belongs to transfer {flow.transfer_id}; update the transfer instead"
                )

            old_value = snapshot(flow, FLOW_FIELDS)
            new_type = _validate_flow_type(changes.get("flow_type") or flow.flow_type)
            new_amount = parse_amount(changes["amount"]) if changes.get("amount") is not None else flow.amount
            if new_amount < 0:
                raise InvalidArgumentError("Flow amount must not be negative")
            new_account = changes["account_id"] if "account_id" in changes else flow.account_id
            if new_account:
                await self._require_account(new_account, user_id)

            await self._apply_signed(flow.account_id, flow.flow_type, -flow.amount)
            await self._apply_signed(new_account, new_type, new_amount)

            flow.flow_type = new_type
            flow.amount = new_amount
            flow.account_id = new_account
            if changes.get("day") is not None:
                flow.day = parse_day(changes["day"])
            for field in ("category", "pay_type", "name"):
                if changes.get(field) is not None:
                    setattr(flow, field, changes[field])
            if "description" in changes:
                flow.description = changes["description"]
            if changes.get("eliminate") is not None:
                flow.eliminate = changes["eliminate"]
            await self.db.flush()

            await audit.log_update("flow", flow_id, old_value, snapshot(flow, FLOW_FIELDS))

        logger.info(f"Updated flow {flow_id}")
        return flow

    async def delete_flow(self, flow_id: str, user_id: str) -> None:
        """
        Delete an entry and reverse its balance effect.

        Deleting one half of a transfer deletes the whole transfer. If the
        transfer row is already gone, every flow still carrying its id is
        removed and the affected balances are recomputed from the ledger.
        """
        flow = await self.get_flow(flow_id, user_id)
        transfer_id = flow.transfer_id

        if transfer_id:
            exists = (await self.db.execute(
                select(Transfer.id).where(Transfer.id == transfer_id, Transfer.user_id == user_id)
            )).scalar_one_or_none()
            if exists:
                logger.info(f"Flow {flow_id} is half of transfer {transfer_id}; deleting the transfer")
                await self.transfers.delete_transfer(transfer_id, user_id)
                return

            audit = AuditService(self.db, user_id=user_id, source="system")
            async with atomic(self.db):
                repaired = await self.transfers.purge(
                    transfer_id,
                    audit=audit,
                    notes=f"Flow {flow_id} referenced missing transfer {transfer_id}",
                )
            logger.warning(
                f"Deleted flows of missing transfer {transfer_id}; recomputed accounts {repaired}"
            )
            return

        audit = AuditService(self.db, user_id=user_id, source=self.source)
        async with atomic(self.db):
            flow = await self.get_flow(flow_id, user_id)
            await self.apply_delete(flow, audit=audit)

        logger.info(f"Deleted flow {flow_id}")

    async def apply_delete(
        self,
        flow: Flow,
        audit: Optional[AuditService] = None,
        notes: Optional[str] = None,
    ) -> None:
        """Delete one freestanding entry and reverse its delta. Does not commit."""
        if flow.transfer_id:
            raise InvalidArgumentError(
                f"Flow {flow.id} belongs to transfer {flow.transfer_id}; delete the transfer instead"
            )
        flow_id = flow.id
        old_value = snapshot(flow, FLOW_FIELDS)
        account_id, flow_type, amount = flow.account_id, flow.flow_type, flow.amount

        result = await self.db.execute(delete(Flow).where(Flow.id == flow_id))
        if result.rowcount != 1:
            raise NotFoundError(f"Flow {flow_id} not found")
        await self._apply_signed(account_id, flow_type, -amount)

        if audit:
            await audit.log_delete("flow", flow_id, old_value, notes=notes)
