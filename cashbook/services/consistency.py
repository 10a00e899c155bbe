"""
Consistency Validator - read-only ledger health checks.

Nothing here writes. Fixing what it reports is the job of the explicit
recalculation and cleanup operations.
"""
import logging
from collections import defaultdict
from typing import Dict, List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cashbook.models.ledger import Account, Flow, Transfer
from cashbook.schemas.ledger import FlowSummary, TransferSummary
from cashbook.schemas.reports import BalanceCheck, DriftReport, IntegrityReport, MalformedTransfer
from cashbook.services.balance import BalanceReconciler
from cashbook.services.transfers import pair_problem

logger = logging.getLogger(__name__)


class ConsistencyValidator:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.reconciler = BalanceReconciler(db)

    async def validate_account_balance(self, account_id: str) -> BalanceCheck:
        return await self.reconciler.validate(account_id)

    async def validate_user_balances(self, user_id: str) -> DriftReport:
        """Check every account of the user and list those whose cached balance drifted."""
        result = await self.db.execute(
            select(Account.id)
            .where(Account.user_id == user_id)
            .order_by(Account.created_at, Account.id)
        )
        account_ids = list(result.scalars().all())

        drifted: List[BalanceCheck] = []
        for account_id in account_ids:
            check = await self.reconciler.validate(account_id)
            if not check.is_valid:
                drifted.append(check)

        if drifted:
            logger.warning(
                f"User {user_id}: {len(drifted)}/{len(account_ids)} account balances drifted "
                f"({[c.account_id for c in drifted]})"
            )

        return DriftReport(
            user_id=user_id,
            total_accounts=len(account_ids),
            drifted_count=len(drifted),
            drifted=drifted,
        )

    async def check_transfer_integrity(self, user_id: str) -> IntegrityReport:
        """
        Find transfers and flows that break the pairing invariant.

        - orphaned: transfers with no linked flows
        - dangling: flows whose transfer no longer exists
        - malformed: transfers whose linked flows are not exactly one debit and one credit
        """
        transfers = (await self.db.execute(
            select(Transfer)
            .where(Transfer.user_id == user_id)
            .order_by(Transfer.created_at, Transfer.id)
        )).scalars().all()

        linked = (await self.db.execute(
            select(Flow)
            .where(Flow.user_id == user_id, Flow.transfer_id.isnot(None))
            .order_by(Flow.created_at, Flow.id)
        )).scalars().all()

        flows_by_transfer: Dict[str, List[Flow]] = defaultdict(list)
        for flow in linked:
            flows_by_transfer[flow.transfer_id].append(flow)

        transfer_ids = {t.id for t in transfers}
        orphaned: List[TransferSummary] = []
        malformed: List[MalformedTransfer] = []

        for transfer in transfers:
            flows = flows_by_transfer.get(transfer.id, [])
            if not flows:
                orphaned.append(TransferSummary.model_validate(transfer))
                continue
            problem = pair_problem(transfer, flows)
            if problem:
                malformed.append(MalformedTransfer(
                    transfer=TransferSummary.model_validate(transfer),
                    flows=[FlowSummary.model_validate(f) for f in flows],
                    reason=problem,
                ))

        dangling = [
            FlowSummary.model_validate(f)
            for f in linked
            if f.transfer_id not in transfer_ids
        ]

        is_consistent = not (orphaned or dangling or malformed)
        if not is_consistent:
            logger.warning(
                f"User {user_id}: {len(orphaned)} orphaned transfers, {len(dangling)} dangling flows, "
                f"{len(malformed)} malformed transfers"
            )

        return IntegrityReport(
            total_transfers=len(transfers),
            orphaned_transfers=orphaned,
            dangling_flows=dangling,
            malformed_transfers=malformed,
            is_consistent=is_consistent,
        )
