"""Shared test fixtures for the cashbook ledger tests."""
import pytest
import pytest_asyncio
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy import select, func, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from cashbook.database import Base
from cashbook.models.ledger import Account, Flow, Transfer
from cashbook.services.accounts import AccountService
from cashbook.services.flows import FlowService
from cashbook.services.transfers import UnifiedTransferService

import cashbook.audit.models  # noqa: F401

USER_ID = "user_1"
OTHER_USER_ID = "user_2"
BOOK_ID = "book_1"
DAY = date(2026, 3, 14)


@pytest_asyncio.fixture
async def engine():
    """Fresh in-memory SQLite database per test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


class Ledger:
    """Small helper for building ledger state in tests."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def account(self, name: str, opening: Optional[str] = None, user_id: str = USER_ID) -> str:
        """Create an account, optionally funded by an opening income flow."""
        account = await AccountService(self.db).create_account(user_id, name)
        if opening:
            await FlowService(self.db).create_flow(
                user_id, BOOK_ID, DAY, "income", Decimal(opening),
                category="opening", account_id=account.id, name="Opening balance",
            )
        return account.id

    async def transfer(self, from_id: str, to_id: str, amount: str, **kwargs) -> Transfer:
        kwargs.setdefault("day", DAY)
        return await UnifiedTransferService(self.db).create_transfer(
            USER_ID, BOOK_ID,
            from_account_id=from_id, to_account_id=to_id, amount=Decimal(amount), **kwargs
        )

    async def loan(self, from_id: str, to_id: str, amount: str, loan_type: str, counterparty: str, **kwargs) -> Transfer:
        return await self.transfer(
            from_id, to_id, amount,
            transfer_type="loan", loan_type=loan_type, counterparty=counterparty, **kwargs
        )

    async def legacy_flow(
        self,
        account_id: Optional[str],
        flow_type: str,
        amount: str,
        counterparty: Optional[str] = None,
        loan_type: Optional[str] = None,
        day: date = DAY,
    ) -> Flow:
        """An old-style loan entry recorded without a transfer."""
        return await FlowService(self.db).create_flow(
            USER_ID, BOOK_ID, day, flow_type, Decimal(amount),
            category="loan", pay_type="loan", account_id=account_id,
            name=f"loan {counterparty or ''}".strip(),
            loan_type=loan_type, counterparty=counterparty,
        )

    async def balance(self, account_id: str) -> Decimal:
        result = await self.db.execute(select(Account.balance).where(Account.id == account_id))
        return result.scalar_one()

    async def set_balance(self, account_id: str, value: str) -> None:
        """Corrupt the cached balance directly."""
        await self.db.execute(update(Account).where(Account.id == account_id).values(balance=Decimal(value)))
        await self.db.commit()

    async def count(self, model, *conditions) -> int:
        query = select(func.count()).select_from(model)
        if conditions:
            query = query.where(*conditions)
        return (await self.db.execute(query)).scalar()

    async def flows_of(self, transfer_id: str):
        result = await self.db.execute(select(Flow).where(Flow.transfer_id == transfer_id))
        return list(result.scalars().all())


@pytest.fixture
def ledger(db):
    return Ledger(db)
