"""
Loan Consolidation Service - migrates legacy loan records onto transfers.

Older data recorded a loan as two unpaired flows (an expense on the lending
account, an income on the receiving one) with no transfer behind them, and
sometimes recorded the same loan more than once. This service:

1. Reports pending work (validate_consistency)
2. Pairs unlinked loan flows and converts each pair into a loan transfer
   (process_all_loan_flows)
3. Collapses duplicate loan transfers onto one canonical record
   (consolidate_duplicate_loan_records)
4. Recomputes every balance from the ledger afterwards
   (recalculate_account_balances)

Bulk steps run one sub-transaction per pair or group, so one bad record only
rolls back itself. Rows are snapshotted into pydantic summaries before any
sub-transaction, since a rollback expires loaded ORM instances.
"""
import logging
from collections import defaultdict
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from sqlalchemy import select, or_, func
from sqlalchemy.ext.asyncio import AsyncSession

from cashbook.audit.services import AuditService
from cashbook.config import settings
from cashbook.database import atomic
from cashbook.errors import AmbiguousStateError, NotFoundError
from cashbook.models.base import to_money
from cashbook.models.ledger import Account, Flow, FlowType, Transfer, TransferType, LOAN_TYPES
from cashbook.schemas.ledger import FlowSummary, TransferSummary
from cashbook.schemas.reports import (
    BalanceChange,
    ConsolidationResult,
    LoanStatistics,
    LoanStatisticsRow,
    LoanValidationResult,
    ProcessResult,
    RecalcResult,
)
from cashbook.services.balance import BalanceReconciler
from cashbook.services.flows import FlowService
from cashbook.services.transfers import UnifiedTransferService, pair_problem

logger = logging.getLogger(__name__)


def loan_flow_condition():
    """SQL predicate selecting loan-category flows."""
    return or_(
        Flow.category == settings.LOAN_CATEGORY,
        Flow.pay_type == settings.LOAN_CATEGORY,
        Flow.loan_type.isnot(None),
    )


def normalize_counterparty(name: Optional[str]) -> str:
    return (name or "").strip().casefold()


def duplicate_key(transfer: TransferSummary) -> Tuple:
    """Equality key of loan transfers describing the same economic event."""
    return (
        normalize_counterparty(transfer.counterparty),
        to_money(transfer.amount),
        transfer.day,
        tuple(sorted((transfer.from_account_id, transfer.to_account_id))),
        transfer.loan_type,
    )


class LoanConsolidationService:
    """Bulk repair of legacy and duplicate loan records for one user."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.transfers = UnifiedTransferService(db, source="migration")
        self.flows = FlowService(db, source="migration")

    # ==========================================================================
    # Scans
    # ==========================================================================

    async def _unlinked_loan_flows(self, user_id: str) -> List[FlowSummary]:
        result = await self.db.execute(
            select(Flow)
            .where(
                Flow.user_id == user_id,
                Flow.transfer_id.is_(None),
                loan_flow_condition(),
            )
            .order_by(Flow.created_at, Flow.id)
        )
        return [FlowSummary.model_validate(f) for f in result.scalars().all()]

    async def validate_consistency(self, user_id: str) -> LoanValidationResult:
        """Report loan flows still waiting for a transfer and flows pointing at missing transfers."""
        unlinked = await self._unlinked_loan_flows(user_id)

        linked_result = await self.db.execute(
            select(Flow)
            .where(
                Flow.user_id == user_id,
                Flow.transfer_id.isnot(None),
                loan_flow_condition(),
            )
            .order_by(Flow.created_at, Flow.id)
        )
        linked = [FlowSummary.model_validate(f) for f in linked_result.scalars().all()]

        invalid_result = await self.db.execute(
            select(Flow)
            .outerjoin(Transfer, Transfer.id == Flow.transfer_id)
            .where(
                Flow.user_id == user_id,
                Flow.transfer_id.isnot(None),
                Transfer.id.is_(None),
            )
            .order_by(Flow.created_at, Flow.id)
        )
        invalid = [FlowSummary.model_validate(f) for f in invalid_result.scalars().all()]

        return LoanValidationResult(
            unlinked_loan_flows=unlinked,
            linked_loan_flows=linked,
            invalid_transfers=invalid,
            needs_processing=bool(unlinked or invalid),
        )

    # ==========================================================================
    # Legacy pair conversion
    # ==========================================================================

    def _candidates(self, expense: FlowSummary, pool: List[FlowSummary], consumed: set) -> List[FlowSummary]:
        """Unconsumed income flows on another account with the same day and amount."""
        return [
            f for f in pool
            if f.id not in consumed
            and f.id != expense.id
            and f.flow_type == FlowType.INCOME.value
            and f.day == expense.day
            and to_money(f.amount) == to_money(expense.amount)
            and f.account_id
            and f.account_id != expense.account_id
        ]

    def _find_counterpart(
        self,
        expense: FlowSummary,
        pool: List[FlowSummary],
        consumed: set,
    ) -> FlowSummary:
        """
        Pick the income flow that pairs with a legacy loan expense.

        Raises NotFoundError when nothing matches and AmbiguousStateError when
        several candidates on different accounts remain.
        """
        candidates = self._candidates(expense, pool, consumed)
        if not candidates:
            raise NotFoundError(f"No counterpart found for loan flow {expense.id}")

        if len(candidates) > 1 and expense.counterparty:
            same_party = [
                c for c in candidates
                if normalize_counterparty(c.counterparty) == normalize_counterparty(expense.counterparty)
            ]
            if same_party:
                candidates = same_party

        accounts = {c.account_id for c in candidates}
        if len(accounts) > 1:
            raise AmbiguousStateError(
                f"Loan flow {expense.id} matches {len(candidates)} flows on different accounts "
                f"({', '.join(c.id for c in candidates)}); not converted"
            )

        # Pool is ordered by creation time
        return candidates[0]

    async def _convert_pair(self, user_id: str, expense: FlowSummary, income: FlowSummary) -> str:
        """Replace two legacy loan flows with one loan transfer. Balances end unchanged."""
        audit = AuditService(self.db, user_id=user_id, source="migration")

        async with atomic(self.db):
            result = await self.db.execute(
                select(Flow)
                .where(
                    Flow.id.in_([expense.id, income.id]),
                    Flow.user_id == user_id,
                    Flow.transfer_id.is_(None),
                )
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            rows = {f.id: f for f in result.scalars().all()}
            if len(rows) != 2:
                raise NotFoundError(f"Loan flows {expense.id}/{income.id} changed since the scan")

            loan_type = next(
                (t for t in (expense.loan_type, income.loan_type) if t in LOAN_TYPES),
                settings.LEGACY_LOAN_DEFAULT_TYPE,
            )
            counterparty = (
                (expense.counterparty or "").strip()
                or (income.counterparty or "").strip()
                or settings.LEGACY_COUNTERPARTY_FALLBACK
            )

            transfer = await self.transfers.apply_create(
                user_id=user_id,
                book_id=expense.book_id,
                day=expense.day,
                from_account_id=expense.account_id,
                to_account_id=income.account_id,
                amount=expense.amount,
                transfer_type=TransferType.LOAN.value,
                loan_type=loan_type,
                counterparty=counterparty,
                audit=audit,
            )
            transfer_id = transfer.id
            await audit.log(
                "transfer", transfer_id, "migrate",
                old_value=[expense.id, income.id],
                notes="Legacy loan flows converted into a transfer",
            )

            for flow_id in (expense.id, income.id):
                await self.flows.apply_delete(
                    rows[flow_id],
                    audit=audit,
                    notes=f"Converted into loan transfer {transfer_id}",
                )

        return transfer_id

    async def process_all_loan_flows(self, user_id: str) -> ProcessResult:
        """
        Convert every matchable pair of unlinked loan flows into a loan transfer.

        Counts are per flow: total scanned, converted, and left unconverted.
        Every account balance of the user is recomputed afterwards.
        """
        pool = await self._unlinked_loan_flows(user_id)
        total = len(pool)
        consumed = set()
        ambiguous_with: Dict[str, str] = {}
        created: List[str] = []
        errors: List[str] = []
        success = 0

        logger.info(f"Processing {total} unlinked loan flows for user {user_id}")

        for flow in pool:
            if flow.id in consumed or flow.flow_type != FlowType.EXPENSE.value:
                continue
            consumed.add(flow.id)

            if not flow.account_id:
                errors.append(f"Loan flow {flow.id} has no account")
                continue

            try:
                counterpart = self._find_counterpart(flow, pool, consumed)
            except AmbiguousStateError as e:
                logger.warning(e.message)
                errors.append(e.message)
                for candidate in self._candidates(flow, pool, consumed):
                    ambiguous_with.setdefault(candidate.id, flow.id)
                continue
            except NotFoundError as e:
                errors.append(e.message)
                continue

            consumed.add(counterpart.id)
            try:
                transfer_id = await self._convert_pair(user_id, flow, counterpart)
                created.append(transfer_id)
                success += 2
            except Exception as e:
                logger.error(f"Failed to convert loan flows {flow.id}/{counterpart.id}: {e}")
                errors.append(f"Loan flows {flow.id}/{counterpart.id}: {e}")

        for flow in pool:
            if flow.id in consumed:
                continue
            if not flow.account_id:
                errors.append(f"Loan flow {flow.id} has no account")
            elif flow.id in ambiguous_with:
                errors.append(
                    f"Loan flow {flow.id} left unconverted: ambiguous match with loan flow {ambiguous_with[flow.id]}"
                )
            else:
                errors.append(f"No counterpart found for loan flow {flow.id}")

        logger.info(
            f"Loan flow processing for user {user_id}: {success}/{total} converted, "
            f"{len(created)} transfers created"
        )
        recalc = await self.recalculate_account_balances(user_id)

        return ProcessResult(
            total=total,
            success=success,
            error=total - success,
            created_transfer_ids=created,
            errors=errors,
            recalc=recalc,
        )

    # ==========================================================================
    # Duplicate consolidation
    # ==========================================================================

    async def _merge_group(self, user_id: str, canonical: TransferSummary, redundant: List[TransferSummary]) -> int:
        """
        Delete the redundant transfers of one group and make sure the canonical
        one is intact. Returns the number of transfers recreated (0 or 1).
        """
        audit = AuditService(self.db, user_id=user_id, source="migration")
        note = f"Duplicate of loan transfer {canonical.id}"
        recreated = 0

        async with atomic(self.db):
            for dup in redundant:
                transfer = await self.transfers.load_transfer(dup.id, user_id, lock=True)
                flows = await self.transfers.linked_flows(dup.id, lock=True)
                if pair_problem(transfer, flows):
                    await self.transfers.purge(dup.id, audit=audit, notes=note)
                else:
                    await self.transfers.apply_delete(transfer, flows=flows, audit=audit)
                await audit.log("transfer", dup.id, "merge", new_value=canonical.id, notes=note)

            transfer = await self.transfers.load_transfer(canonical.id, user_id, lock=True)
            flows = await self.transfers.linked_flows(canonical.id, lock=True)
            problem = pair_problem(transfer, flows)
            if problem:
                logger.warning(f"Canonical loan transfer {canonical.id} is broken ({problem}); recreating")
                await self.transfers.purge(
                    canonical.id,
                    audit=audit,
                    notes=f"Broken canonical loan transfer: {problem}",
                )
                replacement = await self.transfers.apply_create(
                    user_id=user_id,
                    book_id=canonical.book_id,
                    day=canonical.day,
                    from_account_id=canonical.from_account_id,
                    to_account_id=canonical.to_account_id,
                    amount=canonical.amount,
                    transfer_type=TransferType.LOAN.value,
                    loan_type=canonical.loan_type,
                    counterparty=canonical.counterparty,
                    name=canonical.name,
                    description=canonical.description,
                    audit=audit,
                )
                logger.info(f"Recreated canonical loan transfer {canonical.id} as {replacement.id}")
                recreated = 1

        return recreated

    async def consolidate_duplicate_loan_records(self, user_id: str) -> ConsolidationResult:
        """
        Collapse loan transfers describing the same event onto one canonical record.

        The earliest created transfer of a group is canonical; a tie at the
        earliest instant leaves the group untouched and is reported.
        Account balances are recomputed once all groups are handled.
        """
        result = await self.db.execute(
            select(Transfer)
            .where(
                Transfer.user_id == user_id,
                Transfer.transfer_type == TransferType.LOAN.value,
            )
            .order_by(Transfer.created_at, Transfer.id)
        )
        loans = [TransferSummary.model_validate(t) for t in result.scalars().all()]

        groups: Dict[Tuple, List[TransferSummary]] = defaultdict(list)
        for transfer in loans:
            groups[duplicate_key(transfer)].append(transfer)

        group_count = 0
        total_merged = 0
        created = 0
        errors: List[str] = []

        for members in groups.values():
            if len(members) < 2:
                continue
            group_count += 1

            earliest = members[0].created_at
            tied = [m for m in members if m.created_at == earliest]
            if len(tied) > 1:
                err = AmbiguousStateError(
                    f"Duplicate loan group {[m.id for m in members]} has no unambiguous canonical "
                    f"record: {len(tied)} transfers created at {earliest.isoformat()}"
                )
                logger.warning(err.message)
                errors.append(err.message)
                continue

            canonical, redundant = members[0], members[1:]
            try:
                created += await self._merge_group(user_id, canonical, redundant)
                total_merged += len(redundant)
                logger.info(f"Merged {len(redundant)} duplicates into loan transfer {canonical.id}")
            except Exception as e:
                logger.error(f"Failed to consolidate duplicates of loan transfer {canonical.id}: {e}")
                errors.append(f"Loan transfer {canonical.id}: {e}")

        return ConsolidationResult(
            groups=group_count,
            total_merged=total_merged,
            created_transfers=created,
            errors=errors,
            recalc=await self.recalculate_account_balances(user_id),
        )

    # ==========================================================================
    # Balances and statistics
    # ==========================================================================

    async def recalculate_account_balances(self, user_id: str) -> RecalcResult:
        """Unconditionally recompute every account of the user from its flows."""
        audit = AuditService(self.db, user_id=user_id, source="maintenance")
        reconciler = BalanceReconciler(self.db, audit=audit)
        changed: List[BalanceChange] = []

        async with atomic(self.db):
            result = await self.db.execute(
                select(Account)
                .where(Account.user_id == user_id)
                .order_by(Account.created_at, Account.id)
                .execution_options(populate_existing=True)
            )
            accounts = [(a.id, to_money(a.balance)) for a in result.scalars().all()]

            for account_id, old_balance in accounts:
                new_balance = await reconciler.recompute(account_id, notes="Bulk recalculation")
                if new_balance != old_balance:
                    changed.append(BalanceChange(
                        account_id=account_id,
                        old_balance=old_balance,
                        new_balance=new_balance,
                    ))

        logger.info(f"Recalculated {len(accounts)} balances for user {user_id}, {len(changed)} changed")
        return RecalcResult(total=len(accounts), updated=len(changed), changed=changed)

    async def get_loan_flow_statistics(self, user_id: str) -> LoanStatistics:
        result = await self.db.execute(
            select(
                Flow.flow_type,
                Flow.category,
                Flow.pay_type,
                func.count(Flow.id),
                func.sum(Flow.amount),
            )
            .where(Flow.user_id == user_id, loan_flow_condition())
            .group_by(Flow.flow_type, Flow.category, Flow.pay_type)
            .order_by(Flow.flow_type, Flow.category, Flow.pay_type)
        )

        rows = [
            LoanStatisticsRow(
                flow_type=flow_type,
                category=category,
                pay_type=pay_type,
                count=count,
                amount=to_money(amount),
            )
            for flow_type, category, pay_type, count, amount in result.all()
        ]
        return LoanStatistics(
            total_count=sum(r.count for r in rows),
            total_amount=sum((r.amount for r in rows), Decimal("0.00")),
            breakdown=rows,
        )
