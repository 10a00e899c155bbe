"""Tests for FlowService and AccountService."""
import pytest
from decimal import Decimal

from sqlalchemy import delete

from cashbook.errors import InvalidArgumentError, NotFoundError
from cashbook.models.ledger import Account, Flow, Transfer
from cashbook.services.accounts import AccountService
from cashbook.services.balance import BalanceReconciler
from cashbook.services.flows import FlowService

from conftest import BOOK_ID, DAY, OTHER_USER_ID, USER_ID


# =============================================================================
# Flows
# =============================================================================

class TestFlowService:

    @pytest.mark.asyncio
    async def test_create_applies_signed_amount(self, db, ledger):
        cash = await ledger.account("Cash")
        service = FlowService(db)

        await service.create_flow(USER_ID, BOOK_ID, DAY, "income", "300", account_id=cash)
        await service.create_flow(USER_ID, BOOK_ID, DAY, "expense", "45.10", account_id=cash, category="food")

        assert await ledger.balance(cash) == Decimal("254.90")

    @pytest.mark.asyncio
    async def test_create_rejects_bad_input(self, db, ledger):
        cash = await ledger.account("Cash")
        service = FlowService(db)

        with pytest.raises(InvalidArgumentError):
            await service.create_flow(USER_ID, BOOK_ID, DAY, "refund", "10", account_id=cash)
        with pytest.raises(InvalidArgumentError):
            await service.create_flow(USER_ID, BOOK_ID, DAY, "expense", "-10", account_id=cash)
        with pytest.raises(InvalidArgumentError):
            await service.create_flow(USER_ID, BOOK_ID, DAY, "expense", "10", account_id=cash, loan_type="gift")

        assert await ledger.count(Flow) == 0

    @pytest.mark.asyncio
    async def test_create_on_foreign_account(self, db, ledger):
        theirs = await ledger.account("Theirs", user_id=OTHER_USER_ID)

        with pytest.raises(NotFoundError):
            await FlowService(db).create_flow(USER_ID, BOOK_ID, DAY, "income", "10", account_id=theirs)

        assert await ledger.balance(theirs) == Decimal("0.00")

    @pytest.mark.asyncio
    async def test_update_moves_amount_between_accounts(self, db, ledger):
        cash = await ledger.account("Cash")
        bank = await ledger.account("Bank")
        service = FlowService(db)
        flow = await service.create_flow(USER_ID, BOOK_ID, DAY, "income", "100", account_id=cash)

        await service.update_flow(flow.id, USER_ID, account_id=bank, amount=Decimal("80"))
        assert await ledger.balance(cash) == Decimal("0.00")
        assert await ledger.balance(bank) == Decimal("80.00")

        await service.update_flow(flow.id, USER_ID, flow_type="expense")
        assert await ledger.balance(bank) == Decimal("-80.00")

    @pytest.mark.asyncio
    async def test_update_refuses_transfer_half(self, db, ledger):
        cash = await ledger.account("Cash", opening="10")
        bank = await ledger.account("Bank")
        transfer = await ledger.transfer(cash, bank, "5")
        half_id = (await ledger.flows_of(transfer.id))[0].id

        with pytest.raises(InvalidArgumentError, match="update the transfer"):
            await FlowService(db).update_flow(half_id, USER_ID, amount=Decimal("1"))

        assert await ledger.balance(cash) == Decimal("5.00")
        assert await ledger.balance(bank) == Decimal("5.00")

    @pytest.mark.asyncio
    async def test_delete_reverses_delta(self, db, ledger):
        cash = await ledger.account("Cash", opening="100")
        service = FlowService(db)
        flow = await service.create_flow(USER_ID, BOOK_ID, DAY, "expense", "30", account_id=cash)

        await service.delete_flow(flow.id, USER_ID)

        assert await ledger.balance(cash) == Decimal("100.00")

    @pytest.mark.asyncio
    async def test_deleting_a_half_deletes_the_transfer(self, db, ledger):
        cash = await ledger.account("Cash", opening="100")
        bank = await ledger.account("Bank")
        transfer = await ledger.transfer(cash, bank, "60")
        transfer_id = transfer.id
        half_id = (await ledger.flows_of(transfer_id))[0].id

        await FlowService(db).delete_flow(half_id, USER_ID)

        assert await ledger.count(Transfer, Transfer.id == transfer_id) == 0
        assert await ledger.count(Flow, Flow.transfer_id == transfer_id) == 0
        assert await ledger.balance(cash) == Decimal("100.00")
        assert await ledger.balance(bank) == Decimal("0.00")

    @pytest.mark.asyncio
    async def test_deleting_half_of_missing_transfer_repairs_balances(self, db, ledger):
        cash = await ledger.account("Cash", opening="100")
        bank = await ledger.account("Bank")
        transfer = await ledger.transfer(cash, bank, "60")
        transfer_id = transfer.id
        half_id = (await ledger.flows_of(transfer_id))[0].id
        await db.execute(delete(Transfer).where(Transfer.id == transfer_id))
        await db.commit()

        await FlowService(db).delete_flow(half_id, USER_ID)

        assert await ledger.count(Flow, Flow.transfer_id == transfer_id) == 0
        reconciler = BalanceReconciler(db)
        for account_id in (cash, bank):
            assert (await reconciler.validate(account_id)).is_valid
        assert await ledger.balance(cash) == Decimal("100.00")

    @pytest.mark.asyncio
    async def test_list_flows(self, db, ledger):
        cash = await ledger.account("Cash", opening="100")
        bank = await ledger.account("Bank", opening="5")

        flows = await FlowService(db).list_flows(USER_ID, account_id=bank)

        assert [f.amount for f in flows] == [Decimal("5.00")]


# =============================================================================
# Accounts
# =============================================================================

class TestAccountService:

    @pytest.mark.asyncio
    async def test_create_and_list(self, db):
        service = AccountService(db)
        await service.create_account(USER_ID, "Cash")
        await service.create_account(USER_ID, "Card", account_type="credit", hidden=True)
        await service.create_account(OTHER_USER_ID, "Other")

        accounts = await service.list_accounts(USER_ID)
        assert [a.name for a in accounts] == ["Cash", "Card"]
        assert all(a.balance == Decimal("0") for a in accounts)

        visible = await service.list_accounts(USER_ID, include_hidden=False)
        assert [a.name for a in visible] == ["Cash"]

    @pytest.mark.asyncio
    async def test_blank_name_rejected(self, db):
        with pytest.raises(InvalidArgumentError):
            await AccountService(db).create_account(USER_ID, "   ")

    @pytest.mark.asyncio
    async def test_get_other_users_account(self, db, ledger):
        cash = await ledger.account("Cash")

        with pytest.raises(NotFoundError):
            await AccountService(db).get_account(cash, OTHER_USER_ID)

    @pytest.mark.asyncio
    async def test_delete_unreferenced_account(self, db, ledger):
        cash = await ledger.account("Cash")

        await AccountService(db).delete_account(cash, USER_ID)

        assert await ledger.count(Account) == 0

    @pytest.mark.asyncio
    async def test_delete_referenced_account_rejected(self, db, ledger):
        cash = await ledger.account("Cash", opening="10")
        bank = await ledger.account("Bank")
        await ledger.transfer(cash, bank, "10")
        # Bank is referenced by a flow and a transfer; cash additionally by its opening flow

        service = AccountService(db)
        for account_id in (cash, bank):
            with pytest.raises(InvalidArgumentError, match="still referenced"):
                await service.delete_account(account_id, USER_ID)

        assert await ledger.count(Account) == 2
