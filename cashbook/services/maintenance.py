"""
Maintenance Service - removes broken transfer aggregates.

Runs the integrity check and deletes what it finds, one sub-transaction per
item. Every account a removed record touched is recomputed from the ledger.
"""
import logging
from typing import List, Set

from sqlalchemy.ext.asyncio import AsyncSession

from cashbook.audit.services import AuditService
from cashbook.database import atomic
from cashbook.errors import InvalidArgumentError
from cashbook.schemas.reports import CleanupResult
from cashbook.services.consistency import ConsistencyValidator
from cashbook.services.transfers import UnifiedTransferService

logger = logging.getLogger(__name__)


class MaintenanceService:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.transfers = UnifiedTransferService(db, source="maintenance")
        self.validator = ConsistencyValidator(db)

    async def cleanup(self, user_id: str, confirm: bool = False) -> CleanupResult:
        """
        Delete orphaned transfers, dangling flows and malformed transfers.

        Destructive, so confirm must be True.
        """
        if confirm is not True:
            raise InvalidArgumentError("Cleanup deletes ledger records; pass confirm=True to proceed")

        report = await self.validator.check_transfer_integrity(user_id)
        result = CleanupResult()
        repaired: Set[str] = set()

        # (transfer id, accounts it touched, reason)
        work = []
        for transfer in report.orphaned_transfers:
            work.append((transfer.id, [transfer.from_account_id, transfer.to_account_id], "orphaned transfer"))
        for item in report.malformed_transfers:
            work.append((
                item.transfer.id,
                [item.transfer.from_account_id, item.transfer.to_account_id],
                f"malformed transfer: {item.reason}",
            ))

        dangling_by_transfer = {}
        for flow in report.dangling_flows:
            dangling_by_transfer.setdefault(flow.transfer_id, []).append(flow)
        for transfer_id, flows in dangling_by_transfer.items():
            work.append((transfer_id, [f.account_id for f in flows if f.account_id], "dangling flows"))

        flow_ids_by_transfer = {
            item.transfer.id: [f.id for f in item.flows] for item in report.malformed_transfers
        }
        flow_ids_by_transfer.update({
            transfer_id: [f.id for f in flows] for transfer_id, flows in dangling_by_transfer.items()
        })

        for transfer_id, account_ids, reason in work:
            audit = AuditService(self.db, user_id=user_id, source="maintenance")
            try:
                async with atomic(self.db):
                    touched = await self.transfers.purge(
                        transfer_id,
                        account_ids=account_ids,
                        audit=audit,
                        notes=f"Cleanup of {reason}",
                    )
            except Exception as e:
                logger.error(f"Cleanup of {reason} {transfer_id} failed: {e}")
                result.errors.append(f"{transfer_id}: {e}")
                continue

            if reason != "dangling flows":
                result.deleted_transfer_ids.append(transfer_id)
            result.deleted_flow_ids.extend(flow_ids_by_transfer.get(transfer_id, []))
            repaired.update(touched)
            logger.warning(f"Cleaned up {reason} {transfer_id}; recomputed accounts {touched}")

        result.repaired_account_ids = sorted(repaired)
        logger.info(
            f"Cleanup for user {user_id}: {len(result.deleted_transfer_ids)} transfers and "
            f"{len(result.deleted_flow_ids)} flows deleted, {len(result.errors)} errors"
        )
        return result
