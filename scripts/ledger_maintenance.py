#!/usr/bin/env python3
"""
Ledger Maintenance Script.

Runs the loan migration and ledger repair steps for one user or for every
user that owns an account:

    validate     - report pending loan work and transfer integrity problems
    process      - convert legacy loan flow pairs into loan transfers
    consolidate  - merge duplicate loan transfers
    cleanup      - delete orphaned, dangling and malformed transfer records
    recalc       - recompute every account balance from its flows

Run with --dry-run first: it only runs the read-only checks.

Usage:
    # Dry run (reports only)
    python -m scripts.ledger_maintenance --dry-run

    # Full run for one user
    python -m scripts.ledger_maintenance --user-id USER_ID

    # Only some steps
    python -m scripts.ledger_maintenance --steps process recalc
"""
import asyncio
import argparse
import logging
from typing import Dict, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cashbook.config import settings
from cashbook.database import AsyncSessionLocal
from cashbook.models.ledger import Account
from cashbook.services.consistency import ConsistencyValidator
from cashbook.services.loans import LoanConsolidationService
from cashbook.services.maintenance import MaintenanceService

logger = logging.getLogger(__name__)

STEPS = ("validate", "process", "consolidate", "cleanup", "recalc")
WRITE_STEPS = ("process", "consolidate", "cleanup", "recalc")


async def get_user_ids(db: AsyncSession, user_id: Optional[str] = None) -> List[str]:
    """Users to run for: the given one, or every account owner."""
    if user_id:
        return [user_id]
    result = await db.execute(select(Account.user_id).distinct().order_by(Account.user_id))
    return list(result.scalars().all())


async def run_maintenance(
    db: AsyncSession,
    user_id: str,
    steps: Sequence[str] = STEPS,
    dry_run: bool = True,
) -> Dict[str, object]:
    """
    Run the selected maintenance steps for one user.

    Write steps are skipped in dry-run mode. Returns the result model of every
    step that ran, keyed by step name.
    """
    unknown = set(steps) - set(STEPS)
    if unknown:
        raise ValueError(f"Unknown steps: {', '.join(sorted(unknown))}")

    loans = LoanConsolidationService(db)
    results: Dict[str, object] = {}

    print("\n" + "-" * 40)
    print(f"User {user_id}")
    print("-" * 40)

    if "validate" in steps or dry_run:
        validator = ConsistencyValidator(db)
        validation = await loans.validate_consistency(user_id)
        integrity = await validator.check_transfer_integrity(user_id)
        drift = await validator.validate_user_balances(user_id)
        results["validate"] = validation
        results["integrity"] = integrity
        results["balances"] = drift

        print(f"  Unlinked loan flows: {len(validation.unlinked_loan_flows)}")
        print(f"  Flows pointing at missing transfers: {len(validation.invalid_transfers)}")
        print(f"  Orphaned transfers: {len(integrity.orphaned_transfers)}")
        print(f"  Malformed transfers: {len(integrity.malformed_transfers)}")
        print(f"  Drifted balances: {drift.drifted_count}/{drift.total_accounts}")

    if dry_run:
        skipped = [s for s in steps if s in WRITE_STEPS]
        if skipped:
            print(f"  [Would run: {', '.join(skipped)}]")
        return results

    if "process" in steps:
        processed = await loans.process_all_loan_flows(user_id)
        results["process"] = processed
        print(f"  ✓ Converted {processed.success}/{processed.total} loan flows "
              f"({len(processed.created_transfer_ids)} transfers)")
        for error in processed.errors:
            print(f"    ✗ {error}")

    if "consolidate" in steps:
        consolidated = await loans.consolidate_duplicate_loan_records(user_id)
        results["consolidate"] = consolidated
        print(f"  ✓ Merged {consolidated.total_merged} duplicates in {consolidated.groups} groups "
              f"({consolidated.created_transfers} recreated)")
        for error in consolidated.errors:
            print(f"    ✗ {error}")

    if "cleanup" in steps:
        cleaned = await MaintenanceService(db).cleanup(user_id, confirm=True)
        results["cleanup"] = cleaned
        print(f"  ✓ Deleted {len(cleaned.deleted_transfer_ids)} transfers and "
              f"{len(cleaned.deleted_flow_ids)} flows")
        for error in cleaned.errors:
            print(f"    ✗ {error}")

    if "recalc" in steps:
        recalculated = await loans.recalculate_account_balances(user_id)
        results["recalc"] = recalculated
        print(f"  ✓ Recalculated {recalculated.total} balances, {recalculated.updated} changed")
        for change in recalculated.changed:
            print(f"    {change.account_id}: {change.old_balance} -> {change.new_balance}")

    return results


async def main():
    parser = argparse.ArgumentParser(
        description="Migrate legacy loan records and repair ledger consistency"
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Only report; make no changes"
    )
    parser.add_argument(
        "--user-id",
        type=str,
        default=None,
        help="Only run for a specific user ID"
    )
    parser.add_argument(
        "--steps",
        nargs="+",
        choices=STEPS,
        default=list(STEPS),
        help="Steps to run, in the fixed order validate, process, consolidate, cleanup, recalc"
    )

    args = parser.parse_args()
    logging.basicConfig(level=settings.LOG_LEVEL)

    print("\n" + "=" * 60)
    print("LEDGER MAINTENANCE")
    print("=" * 60)
    if args.dry_run:
        print("\n[DRY RUN MODE - No changes will be made]")
    else:
        print("\n[LIVE MODE - Changes will be committed]")
        confirm = input("Type 'yes' to continue: ")
        if confirm.lower() != "yes":
            print("Aborted.")
            return

    async with AsyncSessionLocal() as db:
        user_ids = await get_user_ids(db, args.user_id)
        for user_id in user_ids:
            await run_maintenance(db, user_id, steps=args.steps, dry_run=args.dry_run)

    print("\n" + "=" * 60)
    print(f"Done! ({len(user_ids)} users)")
    print("=" * 60 + "\n")


if __name__ == "__main__":
    asyncio.run(main())
