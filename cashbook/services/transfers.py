"""
Unified Transfer Service - paired money movements between two accounts.

A Transfer is an aggregate: one transfers row plus exactly two flows, an
expense (debit) on the source account and an income (credit) on the
destination account, both pointing back at the transfer. The aggregate is only
ever written as a whole:

    create  -> insert transfer + both halves, apply both balance deltas
    update  -> full reversal of the old pair, full application of the new one
    delete  -> delete both halves + transfer, reverse both balance deltas

Balance deltas are row-level atomic UPDATEs (balance = balance +/- amount), so
concurrent writes to one account serialize in the database. Whenever the
aggregate is found broken, the affected accounts are recomputed through the
BalanceReconciler instead of trusting incremental math.

Loans are ordinary transfers tagged with a loan_type and a counterparty.
"""
import logging
import math
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import select, update, delete, func
from sqlalchemy.ext.asyncio import AsyncSession

from cashbook.audit.services import AuditService, SourceType, snapshot, TRANSFER_FIELDS
from cashbook.config import settings
from cashbook.database import atomic
from cashbook.errors import AmbiguousStateError, InvalidArgumentError, NotFoundError
from cashbook.models.base import to_money, utcnow
from cashbook.models.ledger import Account, Flow, FlowType, Transfer, TransferType, LOAN_TYPES
from cashbook.schemas.ledger import TransferPage, TransferResponse
from cashbook.services.balance import BalanceReconciler

logger = logging.getLogger(__name__)


UPDATABLE_FIELDS = (
    "book_id", "day", "from_account_id", "to_account_id", "amount",
    "transfer_type", "loan_type", "counterparty", "name", "description",
)
TRANSFER_CATEGORY = "transfer"


# ============================================================================
# Pure helpers
# ============================================================================

def parse_amount(value: Any) -> Decimal:
    """Coerce an amount to a two-place Decimal, rejecting garbage and non-finite values."""
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidArgumentError(f"Invalid amount: {value!r}")
    if not amount.is_finite():
        raise InvalidArgumentError(f"Invalid amount: {value!r}")
    return to_money(amount)


def parse_day(value: Any) -> date:
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        raise InvalidArgumentError(f"Invalid date: {value!r}")


def validate_transfer_args(
    from_account_id: Optional[str],
    to_account_id: Optional[str],
    amount: Any,
    transfer_type: str,
    loan_type: Optional[str],
    counterparty: Optional[str],
) -> Tuple[Decimal, str, Optional[str], Optional[str]]:
    """
    Check transfer preconditions before anything is written.

    Returns (amount, transfer_type, loan_type, counterparty) normalized.
    """
    if not from_account_id or not to_account_id:
        raise InvalidArgumentError("Both from_account_id and to_account_id are required")
    if from_account_id == to_account_id:
        raise InvalidArgumentError("Source and destination accounts must differ")

    amount = parse_amount(amount)
    if amount <= 0:
        raise InvalidArgumentError("Transfer amount must be greater than 0")

    valid_types = [t.value for t in TransferType]
    if transfer_type not in valid_types:
        raise InvalidArgumentError(f"Transfer type must be one of: {', '.join(valid_types)}")

    if transfer_type == TransferType.LOAN.value:
        if loan_type not in LOAN_TYPES:
            raise InvalidArgumentError(f"Loan type must be one of: {', '.join(LOAN_TYPES)}")
        counterparty = (counterparty or "").strip()
        if not counterparty:
            raise InvalidArgumentError("Counterparty is required for loan transfers")
        return amount, transfer_type, loan_type, counterparty

    if loan_type:
        raise InvalidArgumentError("loan_type is only valid for loan transfers")
    return amount, transfer_type, None, None


def default_transfer_name(transfer_type: str, loan_type: Optional[str], counterparty: Optional[str]) -> str:
    if transfer_type == TransferType.LOAN.value and loan_type and counterparty:
        return f"{loan_type}-{counterparty}"
    return "Account transfer"


def default_flow_name(
    transfer_type: str,
    loan_type: Optional[str],
    counterparty: Optional[str],
    from_name: str,
    to_name: str,
) -> str:
    if transfer_type == TransferType.LOAN.value and loan_type and counterparty:
        return f"{loan_type} {counterparty}"
    return f"Transfer from {from_name} to {to_name}"


def default_flow_description(
    transfer_type: str,
    loan_type: Optional[str],
    counterparty: Optional[str],
    description: Optional[str],
) -> str:
    if transfer_type == TransferType.LOAN.value and loan_type and counterparty:
        base = f"{loan_type} {counterparty}"
        return f"{base}, {description}" if description else base
    return description or ""


def pair_problem(transfer: Transfer, flows: Sequence[Flow]) -> Optional[str]:
    """
    Describe why the flows linked to a transfer do not form a valid pair.

    Returns None when there is exactly one expense on the source account and one
    income on the destination account, both carrying the transfer amount.
    """
    if not flows:
        return "no linked flows"

    amount = to_money(transfer.amount)
    debits = [
        f for f in flows
        if f.flow_type == FlowType.EXPENSE.value and f.account_id == transfer.from_account_id
    ]
    credits = [
        f for f in flows
        if f.flow_type == FlowType.INCOME.value and f.account_id == transfer.to_account_id
    ]

    if len(flows) != 2:
        return f"{len(flows)} linked flows, expected 2"
    if len(debits) != 1:
        return f"no expense half on source account {transfer.from_account_id}"
    if len(credits) != 1:
        return f"no income half on destination account {transfer.to_account_id}"
    if to_money(debits[0].amount) != amount or to_money(credits[0].amount) != amount:
        return "half amounts differ from the transfer amount"
    return None


# ============================================================================
# Service
# ============================================================================

class UnifiedTransferService:
    """
    Service for creating, updating and deleting transfers and loan movements.

    Public operations each run in one atomic transaction. The apply_* methods
    perform the same effects inside a transaction the caller already owns; bulk
    maintenance jobs compose them into per-item sub-transactions.
    """

    def __init__(self, db: AsyncSession, source: SourceType = "api"):
        self.db = db
        self.source = source

    def _audit(self, user_id: Optional[str]) -> AuditService:
        return AuditService(self.db, user_id=user_id, source=self.source)

    # ==========================================================================
    # Loading
    # ==========================================================================

    async def _require_accounts(self, user_id: str, *account_ids: str) -> Dict[str, Account]:
        result = await self.db.execute(
            select(Account).where(
                Account.id.in_(account_ids),
                Account.user_id == user_id,
            )
        )
        accounts = {a.id: a for a in result.scalars().all()}
        for account_id in account_ids:
            if account_id not in accounts:
                raise NotFoundError(f"Account {account_id} not found")
        return accounts

    async def load_transfer(self, transfer_id: str, user_id: str, lock: bool = False) -> Transfer:
        query = select(Transfer).where(
            Transfer.id == transfer_id,
            Transfer.user_id == user_id,
        )
        if lock:
            query = query.with_for_update()
        result = await self.db.execute(query.execution_options(populate_existing=True))
        transfer = result.scalar_one_or_none()
        if not transfer:
            raise NotFoundError(f"Transfer {transfer_id} not found")
        return transfer

    async def linked_flows(self, transfer_id: str, lock: bool = False) -> List[Flow]:
        """All flows whose transfer_id points at the given transfer."""
        query = (
            select(Flow)
            .where(Flow.transfer_id == transfer_id)
            .order_by(Flow.created_at, Flow.id)
        )
        if lock:
            query = query.with_for_update()
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def get_transfer(self, transfer_id: str, user_id: str) -> Transfer:
        return await self.load_transfer(transfer_id, user_id)

    async def list_transfers(
        self,
        user_id: str,
        transfer_type: Optional[str] = None,
        start_day: Optional[date] = None,
        end_day: Optional[date] = None,
        page: int = 1,
        page_size: int = 100,
    ) -> TransferPage:
        """List a user's transfers, newest first."""
        if page < 1 or not 1 <= page_size <= 500:
            raise InvalidArgumentError("page must be >= 1 and page_size between 1 and 500")

        conditions = [Transfer.user_id == user_id]
        if transfer_type:
            conditions.append(Transfer.transfer_type == transfer_type)
        if start_day:
            conditions.append(Transfer.day >= start_day)
        if end_day:
            conditions.append(Transfer.day <= end_day)

        total = (await self.db.execute(
            select(func.count()).select_from(Transfer).where(*conditions)
        )).scalar() or 0

        result = await self.db.execute(
            select(Transfer)
            .where(*conditions)
            .order_by(Transfer.created_at.desc(), Transfer.id)
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        transfers = result.scalars().all()

        return TransferPage(
            data=[TransferResponse.model_validate(t) for t in transfers],
            total=total,
            page=page,
            page_size=page_size,
            total_pages=math.ceil(total / page_size) if total else 0,
        )

    # ==========================================================================
    # Balance primitives
    # ==========================================================================

    async def _apply_delta(self, account_id: str, delta: Decimal) -> None:
        await self.db.execute(
            update(Account)
            .where(Account.id == account_id)
            .values(balance=Account.balance + delta)
        )

    # ==========================================================================
    # In-transaction primitives
    # ==========================================================================

    async def apply_create(
        self,
        user_id: str,
        book_id: str,
        day: Any,
        from_account_id: str,
        to_account_id: str,
        amount: Any,
        transfer_type: str = TransferType.TRANSFER.value,
        loan_type: Optional[str] = None,
        counterparty: Optional[str] = None,
        name: Optional[str] = None,
        description: Optional[str] = None,
        *,
        transfer_id: Optional[str] = None,
        created_at=None,
        audit: Optional[AuditService] = None,
    ) -> Transfer:
        """
        Insert a transfer with both halves and apply its balance deltas.

        Validates everything before the first write. Does not commit.
        """
        amount, transfer_type, loan_type, counterparty = validate_transfer_args(
            from_account_id, to_account_id, amount, transfer_type, loan_type, counterparty
        )
        if not book_id:
            raise InvalidArgumentError("book_id is required")
        day = parse_day(day)
        accounts = await self._require_accounts(user_id, from_account_id, to_account_id)

        transfer = Transfer(
            user_id=user_id,
            book_id=book_id,
            day=day,
            from_account_id=from_account_id,
            to_account_id=to_account_id,
            amount=amount,
            transfer_type=transfer_type,
            loan_type=loan_type,
            counterparty=counterparty,
            name=name or default_transfer_name(transfer_type, loan_type, counterparty),
            description=description,
        )
        if transfer_id:
            transfer.id = transfer_id
        if created_at:
            transfer.created_at = created_at
            transfer.updated_at = utcnow()
        self.db.add(transfer)
        await self.db.flush()

        category = settings.LOAN_CATEGORY if transfer.is_loan else TRANSFER_CATEGORY
        flow_name = default_flow_name(
            transfer_type, loan_type, counterparty,
            accounts[from_account_id].name, accounts[to_account_id].name,
        )
        flow_description = default_flow_description(transfer_type, loan_type, counterparty, description)

        for flow_type, account_id in (
            (FlowType.EXPENSE.value, from_account_id),
            (FlowType.INCOME.value, to_account_id),
        ):
            self.db.add(Flow(
                user_id=user_id,
                book_id=book_id,
                day=day,
                flow_type=flow_type,
                category=category,
                pay_type=category,
                amount=amount,
                name=flow_name,
                description=flow_description,
                account_id=account_id,
                transfer_id=transfer.id,
                eliminate=True,  # Moving money between own accounts is neither income nor expense
                loan_type=loan_type,
                counterparty=counterparty,
            ))

        await self._apply_delta(from_account_id, -amount)
        await self._apply_delta(to_account_id, amount)
        await self.db.flush()

        if audit:
            await audit.log_create("transfer", transfer.id, snapshot(transfer, TRANSFER_FIELDS))

        return transfer

    async def apply_delete(
        self,
        transfer: Transfer,
        flows: Optional[List[Flow]] = None,
        audit: Optional[AuditService] = None,
    ) -> List[str]:
        """
        Delete a transfer with both halves and reverse its balance deltas.

        Raises AmbiguousStateError (listing every account involved) when the two
        halves cannot both be located. Returns the accounts that had to be
        repaired through the reconciler because flows still referenced the
        transfer after it was deleted. Does not commit.
        """
        if flows is None:
            flows = await self.linked_flows(transfer.id, lock=True)

        transfer_id = transfer.id
        from_id = transfer.from_account_id
        to_id = transfer.to_account_id
        amount = to_money(transfer.amount)
        old_value = snapshot(transfer, TRANSFER_FIELDS)

        problem = pair_problem(transfer, flows)
        if problem:
            touched = {from_id, to_id} | {f.account_id for f in flows if f.account_id}
            logger.warning(f"Transfer {transfer_id} cannot be unwound safely: {problem}")
            raise AmbiguousStateError(
                f"Transfer {transfer_id} is inconsistent ({problem}). "
                f"No records were deleted; balances of the affected accounts were recomputed from the ledger.",
                repaired_account_ids=touched,
            )

        await self.db.execute(delete(Flow).where(Flow.id.in_([f.id for f in flows])))
        await self._apply_delta(from_id, amount)
        await self._apply_delta(to_id, -amount)

        result = await self.db.execute(delete(Transfer).where(Transfer.id == transfer_id))
        if result.rowcount != 1:
            # Another transaction removed it first; its deltas were already reversed there
            raise NotFoundError(f"Transfer {transfer_id} not found")

        repaired: List[str] = []
        leftovers = await self.linked_flows(transfer_id)
        if leftovers:
            leftover_accounts = {f.account_id for f in leftovers if f.account_id}
            logger.warning(
                f"Transfer {transfer_id} still had {len(leftovers)} linked flows after delete "
                f"({[f.id for f in leftovers]}); force-deleting and recomputing balances"
            )
            await self.db.execute(delete(Flow).where(Flow.transfer_id == transfer_id))
            reconciler = BalanceReconciler(self.db, audit=audit)
            recomputed = await reconciler.recompute_many(
                {from_id, to_id} | leftover_accounts,
                repair=True,
                notes=f"Dangling flows of deleted transfer {transfer_id}",
            )
            repaired = sorted(recomputed)

        if audit:
            await audit.log_delete("transfer", transfer_id, old_value)

        return repaired

    async def purge(
        self,
        transfer_id: str,
        account_ids: Iterable[str] = (),
        audit: Optional[AuditService] = None,
        notes: Optional[str] = None,
    ) -> List[str]:
        """
        Remove a broken aggregate wholesale: every flow referencing the id and
        the transfer row if present, then recompute every touched account.

        Used by maintenance, never by the regular write paths. Does not commit.
        """
        flows = await self.linked_flows(transfer_id, lock=True)
        touched = set(account_ids) | {f.account_id for f in flows if f.account_id}

        transfer = (await self.db.execute(
            select(Transfer).where(Transfer.id == transfer_id)
        )).scalar_one_or_none()
        old_value = None
        if transfer:
            touched |= {transfer.from_account_id, transfer.to_account_id}
            old_value = snapshot(transfer, TRANSFER_FIELDS)

        await self.db.execute(delete(Flow).where(Flow.transfer_id == transfer_id))
        await self.db.execute(delete(Transfer).where(Transfer.id == transfer_id))

        reconciler = BalanceReconciler(self.db, audit=audit)
        recomputed = await reconciler.recompute_many(touched, repair=True, notes=notes)

        if audit:
            await audit.log_delete("transfer", transfer_id, old_value, notes=notes)

        return sorted(recomputed)

    # ==========================================================================
    # Public operations
    # ==========================================================================

    async def create_transfer(
        self,
        user_id: str,
        book_id: str,
        day: Any,
        from_account_id: str,
        to_account_id: str,
        amount: Any,
        transfer_type: str = TransferType.TRANSFER.value,
        loan_type: Optional[str] = None,
        counterparty: Optional[str] = None,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Transfer:
        """Create a transfer (or loan movement) and both of its flows."""
        async with atomic(self.db):
            transfer = await self.apply_create(
                user_id=user_id,
                book_id=book_id,
                day=day,
                from_account_id=from_account_id,
                to_account_id=to_account_id,
                amount=amount,
                transfer_type=transfer_type,
                loan_type=loan_type,
                counterparty=counterparty,
                name=name,
                description=description,
                audit=self._audit(user_id),
            )

        logger.info(
            f"Created {transfer.transfer_type} {transfer.id}: "
            f"{transfer.from_account_id} -> {transfer.to_account_id} {transfer.amount}"
        )
        return transfer

    async def update_transfer(self, transfer_id: str, user_id: str, **changes: Any) -> Transfer:
        """
        Change any subset of a transfer's fields.

        Implemented as delete-then-recreate in one transaction: the old pair is
        fully unwound and the new pair fully applied, so no partial-field update
        can leave an inconsistent balance behind. The transfer keeps its id and
        creation time.
        """
        unknown = set(changes) - set(UPDATABLE_FIELDS)
        if unknown:
            raise InvalidArgumentError(f"Cannot update transfer fields: {', '.join(sorted(unknown))}")

        audit = self._audit(user_id)
        try:
            async with atomic(self.db):
                transfer = await self.load_transfer(transfer_id, user_id, lock=True)
                old_value = snapshot(transfer, TRANSFER_FIELDS)
                created_at = transfer.created_at

                merged = {field: getattr(transfer, field) for field in UPDATABLE_FIELDS}
                for field, value in changes.items():
                    if value is None and field in ("book_id", "day", "from_account_id", "to_account_id", "amount", "transfer_type"):
                        continue
                    merged[field] = value
                if merged["transfer_type"] != TransferType.LOAN.value:
                    merged["loan_type"] = None
                    merged["counterparty"] = None

                # Auto-generated names follow the new loan details unless renamed explicitly
                if "name" not in changes and transfer.name == default_transfer_name(
                    transfer.transfer_type, transfer.loan_type, transfer.counterparty
                ):
                    merged["name"] = None

                # Reject bad input before the old pair is touched
                validate_transfer_args(
                    merged["from_account_id"], merged["to_account_id"], merged["amount"],
                    merged["transfer_type"], merged["loan_type"], merged["counterparty"],
                )
                parse_day(merged["day"])
                await self._require_accounts(user_id, merged["from_account_id"], merged["to_account_id"])

                await self.apply_delete(transfer, audit=None)
                updated = await self.apply_create(
                    user_id=user_id,
                    transfer_id=transfer_id,
                    created_at=created_at,
                    audit=None,
                    **merged,
                )

                await audit.log_update("transfer", transfer_id, old_value, snapshot(updated, TRANSFER_FIELDS))
        except AmbiguousStateError as e:
            await self.repair_accounts(e.repaired_account_ids, user_id, notes=e.message)
            raise

        logger.info(f"Updated transfer {transfer_id}")
        return updated

    async def delete_transfer(self, transfer_id: str, user_id: str) -> None:
        """Delete a transfer together with both halves, reversing its balance effect."""
        audit = self._audit(user_id)
        try:
            async with atomic(self.db):
                transfer = await self.load_transfer(transfer_id, user_id, lock=True)
                repaired = await self.apply_delete(transfer, audit=audit)
        except AmbiguousStateError as e:
            await self.repair_accounts(e.repaired_account_ids, user_id, notes=e.message)
            raise

        if repaired:
            logger.warning(f"Deleted transfer {transfer_id}; repaired accounts {repaired}")
        else:
            logger.info(f"Deleted transfer {transfer_id}")

    async def repair_accounts(
        self,
        account_ids: Iterable[str],
        user_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> List[str]:
        """
        Fail-safe path: recompute the given accounts from the ledger and commit.

        Runs in its own transaction, after the operation that detected the
        inconsistency has been rolled back.
        """
        account_ids = sorted({a for a in account_ids if a})
        if not account_ids:
            return []
        audit = AuditService(self.db, user_id=user_id, source="system")
        async with atomic(self.db):
            recomputed = await BalanceReconciler(self.db, audit=audit).recompute_many(
                account_ids, repair=True, notes=notes
            )
        logger.warning(f"Recomputed balances of accounts {sorted(recomputed)} after inconsistency")
        return sorted(recomputed)
