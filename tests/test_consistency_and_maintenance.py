"""Tests for the ConsistencyValidator and the MaintenanceService cleanup."""
import pytest
from decimal import Decimal

from sqlalchemy import delete

from cashbook.errors import InvalidArgumentError, NotFoundError
from cashbook.models.ledger import Flow, Transfer
from cashbook.services.consistency import ConsistencyValidator
from cashbook.services.maintenance import MaintenanceService

from conftest import OTHER_USER_ID, USER_ID


async def build_broken_ledger(db, ledger):
    """
    Cash (100) and Bank with four transfers from cash to bank:
    orphaned (flows gone), dangling (transfer row gone), malformed
    (credit half gone) and one intact transfer of 5.
    """
    cash = await ledger.account("Cash", opening="100")
    bank = await ledger.account("Bank")

    orphaned = (await ledger.transfer(cash, bank, "10")).id
    dangling = (await ledger.transfer(cash, bank, "20")).id
    malformed = (await ledger.transfer(cash, bank, "30")).id
    intact = (await ledger.transfer(cash, bank, "5")).id

    await db.execute(delete(Flow).where(Flow.transfer_id == orphaned))
    await db.execute(delete(Transfer).where(Transfer.id == dangling))
    await db.execute(delete(Flow).where(Flow.transfer_id == malformed, Flow.flow_type == "income"))
    await db.commit()

    return dict(cash=cash, bank=bank, orphaned=orphaned, dangling=dangling, malformed=malformed, intact=intact)


# =============================================================================
# Balance drift
# =============================================================================

class TestBalanceDrift:

    @pytest.mark.asyncio
    async def test_report_lists_only_drifted_accounts(self, db, ledger):
        cash = await ledger.account("Cash", opening="100")
        await ledger.account("Bank", opening="3")
        await ledger.set_balance(cash, "1")

        report = await ConsistencyValidator(db).validate_user_balances(USER_ID)

        assert (report.total_accounts, report.drifted_count) == (2, 1)
        check = report.drifted[0]
        assert check.account_id == cash
        assert check.stored_balance == Decimal("1.00")
        assert check.computed_balance == Decimal("100.00")
        # Read-only
        assert await ledger.balance(cash) == Decimal("1.00")

    @pytest.mark.asyncio
    async def test_other_users_accounts_are_not_checked(self, db, ledger):
        theirs = await ledger.account("Theirs", opening="9", user_id=OTHER_USER_ID)
        await ledger.set_balance(theirs, "0")

        report = await ConsistencyValidator(db).validate_user_balances(USER_ID)

        assert report.total_accounts == 0
        assert report.drifted == []

    @pytest.mark.asyncio
    async def test_single_account_check(self, db, ledger):
        cash = await ledger.account("Cash", opening="12.34")

        check = await ConsistencyValidator(db).validate_account_balance(cash)
        assert check.is_valid

        with pytest.raises(NotFoundError):
            await ConsistencyValidator(db).validate_account_balance("acct_missing")


# =============================================================================
# Transfer integrity
# =============================================================================

class TestTransferIntegrity:

    @pytest.mark.asyncio
    async def test_intact_ledger_is_consistent(self, db, ledger):
        cash = await ledger.account("Cash", opening="100")
        bank = await ledger.account("Bank")
        await ledger.transfer(cash, bank, "10")
        await ledger.loan(cash, bank, "10", "lend", "Alice")

        report = await ConsistencyValidator(db).check_transfer_integrity(USER_ID)

        assert report.is_consistent
        assert report.total_transfers == 2

    @pytest.mark.asyncio
    async def test_detects_every_kind_of_break(self, db, ledger):
        ids = await build_broken_ledger(db, ledger)

        report = await ConsistencyValidator(db).check_transfer_integrity(USER_ID)

        assert not report.is_consistent
        assert report.total_transfers == 3
        assert [t.id for t in report.orphaned_transfers] == [ids["orphaned"]]
        assert {f.transfer_id for f in report.dangling_flows} == {ids["dangling"]}
        assert len(report.dangling_flows) == 2
        assert [m.transfer.id for m in report.malformed_transfers] == [ids["malformed"]]
        assert report.malformed_transfers[0].reason == "1 linked flows, expected 2"

    @pytest.mark.asyncio
    async def test_mismatched_half_amount_is_malformed(self, db, ledger):
        cash = await ledger.account("Cash", opening="100")
        bank = await ledger.account("Bank")
        transfer_id = (await ledger.transfer(cash, bank, "10")).id
        credit = [f for f in await ledger.flows_of(transfer_id) if f.flow_type == "income"][0]
        credit.amount = Decimal("9")
        await db.commit()

        report = await ConsistencyValidator(db).check_transfer_integrity(USER_ID)

        assert [m.transfer.id for m in report.malformed_transfers] == [transfer_id]
        assert "amounts differ" in report.malformed_transfers[0].reason


# =============================================================================
# Cleanup
# =============================================================================

class TestCleanup:

    @pytest.mark.asyncio
    async def test_requires_confirmation(self, db, ledger):
        ids = await build_broken_ledger(db, ledger)

        with pytest.raises(InvalidArgumentError, match="confirm"):
            await MaintenanceService(db).cleanup(USER_ID)

        report = await ConsistencyValidator(db).check_transfer_integrity(USER_ID)
        assert [t.id for t in report.orphaned_transfers] == [ids["orphaned"]]

    @pytest.mark.asyncio
    async def test_removes_broken_records_and_repairs_balances(self, db, ledger):
        ids = await build_broken_ledger(db, ledger)

        result = await MaintenanceService(db).cleanup(USER_ID, confirm=True)

        assert result.errors == []
        assert result.deleted_transfer_ids == [ids["orphaned"], ids["malformed"]]
        assert len(result.deleted_flow_ids) == 3
        assert result.repaired_account_ids == sorted([ids["cash"], ids["bank"]])

        validator = ConsistencyValidator(db)
        report = await validator.check_transfer_integrity(USER_ID)
        assert report.is_consistent
        assert report.total_transfers == 1
        assert (await validator.validate_user_balances(USER_ID)).drifted_count == 0

        # Only the opening flow and the intact transfer remain
        assert await ledger.balance(ids["cash"]) == Decimal("95.00")
        assert await ledger.balance(ids["bank"]) == Decimal("5.00")
        assert await ledger.count(Transfer, Transfer.id == ids["intact"]) == 1

    @pytest.mark.asyncio
    async def test_nothing_to_do_on_clean_ledger(self, db, ledger):
        cash = await ledger.account("Cash", opening="100")
        bank = await ledger.account("Bank")
        await ledger.transfer(cash, bank, "10")

        result = await MaintenanceService(db).cleanup(USER_ID, confirm=True)

        assert result.deleted_transfer_ids == []
        assert result.deleted_flow_ids == []
        assert result.repaired_account_ids == []
        assert await ledger.balance(cash) == Decimal("90.00")
