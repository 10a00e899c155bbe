"""
Audit trail writer for ledger changes.

Rows are added to the caller's session and never committed here, so an audit
entry exists exactly when the write it describes was committed.
"""
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, Dict, Any, List, Literal, Sequence, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc

from cashbook.audit.models import AuditLog


EntityType = Literal["account", "flow", "transfer"]
ActionType = Literal["create", "update", "delete", "reconcile", "repair", "migrate", "merge"]
SourceType = Literal["api", "system", "migration", "maintenance"]

# Attributes captured in create/update/delete images
TRANSFER_FIELDS = (
    "id", "book_id", "day", "from_account_id", "to_account_id", "amount",
    "transfer_type", "loan_type", "counterparty", "name", "description",
)
FLOW_FIELDS = (
    "id", "book_id", "day", "flow_type", "category", "pay_type", "amount",
    "account_id", "transfer_id", "eliminate", "loan_type", "counterparty", "name",
)


def _json_value(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


def snapshot(row: Any, fields: Sequence[str]) -> Dict[str, Any]:
    """JSON-safe dict of the given attributes of an ORM row."""
    return {name: _json_value(getattr(row, name, None)) for name in fields}


def changed_fields(before: Dict[str, Any], after: Dict[str, Any]) -> Dict[str, Tuple[Any, Any]]:
    """Fields whose value differs between two snapshots, as (old, new) pairs."""
    return {
        name: (before.get(name), after.get(name))
        for name in after
        if before.get(name) != after.get(name)
    }


class AuditService:
    """
    Records who changed which ledger entity, how, and from which write path.

    Usage:
        audit = AuditService(db, user_id="user_1", source="migration")
        await audit.log_create("transfer", transfer.id, snapshot(transfer, TRANSFER_FIELDS))
        await audit.log_balance(account.id, old_balance, new_balance, repair=True, notes="...")
    """

    def __init__(self, db: AsyncSession, user_id: Optional[str] = None, source: SourceType = "api"):
        self.db = db
        self.user_id = user_id
        self.source = source

    async def log(
        self,
        entity_type: EntityType,
        entity_id: str,
        action: ActionType,
        field_name: Optional[str] = None,
        old_value: Optional[Any] = None,
        new_value: Optional[Any] = None,
        metadata: Optional[Dict[str, Any]] = None,
        notes: Optional[str] = None,
    ) -> AuditLog:
        """
        Add one audit row to the session.

        Values may be Decimals, dates or snapshot dicts; scalars are converted
        to their JSON form here.
        """
        entry = AuditLog(
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            field_name=field_name,
            old_value=_json_value(old_value),
            new_value=_json_value(new_value),
            user_id=self.user_id,
            source=self.source,
            extra_data=metadata,
            notes=notes,
        )
        self.db.add(entry)
        return entry

    async def log_create(
        self,
        entity_type: EntityType,
        entity_id: str,
        new_value: Dict[str, Any],
        notes: Optional[str] = None,
    ) -> AuditLog:
        return await self.log(entity_type, entity_id, "create", new_value=new_value, notes=notes)

    async def log_update(
        self,
        entity_type: EntityType,
        entity_id: str,
        before: Dict[str, Any],
        after: Dict[str, Any],
        notes: Optional[str] = None,
    ) -> List[AuditLog]:
        """One row per field that differs between the two snapshots."""
        return [
            await self.log(
                entity_type, entity_id, "update",
                field_name=name, old_value=old, new_value=new, notes=notes,
            )
            for name, (old, new) in changed_fields(before, after).items()
        ]

    async def log_delete(
        self,
        entity_type: EntityType,
        entity_id: str,
        old_value: Optional[Dict[str, Any]] = None,
        notes: Optional[str] = None,
    ) -> AuditLog:
        return await self.log(entity_type, entity_id, "delete", old_value=old_value, notes=notes)

    async def log_balance(
        self,
        account_id: str,
        old_balance: Decimal,
        new_balance: Decimal,
        repair: bool = False,
        notes: Optional[str] = None,
    ) -> AuditLog:
        """A cached balance overwritten by the reconciler."""
        return await self.log(
            "account", account_id, "repair" if repair else "reconcile",
            field_name="balance",
            old_value=old_balance,
            new_value=new_balance,
            notes=notes,
        )

    async def history(
        self,
        entity_type: Optional[EntityType] = None,
        entity_id: Optional[str] = None,
        user_id: Optional[str] = None,
        since: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[AuditLog]:
        """Audit rows matching every given filter, newest first."""
        query = select(AuditLog)
        if entity_type:
            query = query.where(AuditLog.entity_type == entity_type)
        if entity_id:
            query = query.where(AuditLog.entity_id == entity_id)
        if user_id:
            query = query.where(AuditLog.user_id == user_id)
        if since:
            query = query.where(AuditLog.created_at >= since)

        result = await self.db.execute(
            query.order_by(desc(AuditLog.created_at), AuditLog.id).limit(limit)
        )
        return list(result.scalars().all())
