"""
Balance Reconciler - the authoritative balance-from-ledger computation.

An account's correct balance is the sum over every flow that references it of
+amount (income) or -amount (expense). The eliminate flag is ignored: it only
hides an entry from income/expense reporting, the money still moved. Transfer
halves are ordinary flows and count like any other.

Account.balance is a cache of that sum. Write paths keep it current with
exact deltas; this service is what repairs it when a delta can't be trusted.
"""
import logging
from decimal import Decimal
from typing import Dict, Iterable, Optional

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from cashbook.audit.services import AuditService
from cashbook.config import settings
from cashbook.errors import NotFoundError
from cashbook.models.base import to_money
from cashbook.models.ledger import Account, Flow, FlowType
from cashbook.schemas.reports import BalanceCheck

logger = logging.getLogger(__name__)


class BalanceReconciler:
    """
    Computes, validates and rewrites cached account balances.

    Never commits: recompute() writes inside whatever transaction the caller
    has open, so a repair is atomic with the write that required it.
    """

    def __init__(self, db: AsyncSession, audit: Optional[AuditService] = None):
        self.db = db
        self.audit = audit

    async def _get_account(self, account_id: str) -> Account:
        result = await self.db.execute(
            select(Account)
            .where(Account.id == account_id)
            .execution_options(populate_existing=True)
        )
        account = result.scalar_one_or_none()
        if not account:
            raise NotFoundError(f"Account {account_id} not found")
        return account

    async def _sum_flows(self, account_id: str) -> Decimal:
        result = await self.db.execute(
            select(Flow.flow_type, func.sum(Flow.amount))
            .where(Flow.account_id == account_id)
            .group_by(Flow.flow_type)
        )
        total = Decimal("0")
        for flow_type, amount in result.all():
            amount = to_money(amount)
            if flow_type == FlowType.INCOME.value:
                total += amount
            else:
                total -= amount
        return to_money(total)

    async def compute_balance(self, account_id: str) -> Decimal:
        """Balance implied by the ledger. Pure read."""
        await self._get_account(account_id)
        return await self._sum_flows(account_id)

    async def recompute(self, account_id: str, repair: bool = False, notes: Optional[str] = None) -> Decimal:
        """
        Overwrite the cached balance with the computed one and return it.

        Idempotent: running it twice without intervening writes yields the same
        value and leaves the row unchanged the second time.
        """
        account = await self._get_account(account_id)
        stored = to_money(account.balance)
        computed = await self._sum_flows(account_id)

        if stored != computed:
            await self.db.execute(
                update(Account)
                .where(Account.id == account_id)
                .values(balance=computed)
            )
            if repair:
                logger.warning(f"Repaired balance of account {account_id}: {stored} -> {computed}")
            else:
                logger.info(f"Recomputed balance of account {account_id}: {stored} -> {computed}")
            if self.audit:
                await self.audit.log_balance(account_id, stored, computed, repair=repair, notes=notes)

        return computed

    async def recompute_many(
        self,
        account_ids: Iterable[str],
        repair: bool = False,
        notes: Optional[str] = None,
    ) -> Dict[str, Decimal]:
        """Recompute several accounts, skipping ids that no longer exist."""
        results: Dict[str, Decimal] = {}
        for account_id in sorted({a for a in account_ids if a}):
            try:
                results[account_id] = await self.recompute(account_id, repair=repair, notes=notes)
            except NotFoundError:
                logger.warning(f"Skipping recompute of missing account {account_id}")
        return results

    async def validate(self, account_id: str) -> BalanceCheck:
        """Compare stored and computed balances without mutating anything."""
        account = await self._get_account(account_id)
        stored = to_money(account.balance)
        computed = await self._sum_flows(account_id)
        difference = stored - computed

        return BalanceCheck(
            account_id=account_id,
            account_name=account.name,
            stored_balance=stored,
            computed_balance=computed,
            difference=difference,
            is_valid=abs(difference) < settings.BALANCE_TOLERANCE,
        )
