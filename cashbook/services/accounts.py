"""Account Service - account CRUD."""
import logging
from typing import List

from sqlalchemy import select, delete, or_, func
from sqlalchemy.ext.asyncio import AsyncSession

from cashbook.audit.services import AuditService, SourceType
from cashbook.database import atomic
from cashbook.errors import InvalidArgumentError, NotFoundError
from cashbook.models.ledger import Account, Flow, Transfer

logger = logging.getLogger(__name__)


class AccountService:
    def __init__(self, db: AsyncSession, source: SourceType = "api"):
        self.db = db
        self.source = source

    async def create_account(
        self,
        user_id: str,
        name: str,
        account_type: str = "cash",
        currency: str = "CNY",
        include_in_net_worth: bool = True,
        hidden: bool = False,
    ) -> Account:
        """Create an account. Balances always start at zero and move only through flows."""
        if not name or not name.strip():
            raise InvalidArgumentError("Account name is required")

        audit = AuditService(self.db, user_id=user_id, source=self.source)
        async with atomic(self.db):
            account = Account(
                user_id=user_id,
                name=name.strip(),
                account_type=account_type,
                currency=currency,
                include_in_net_worth=include_in_net_worth,
                hidden=hidden,
                balance=0,
            )
            self.db.add(account)
            await self.db.flush()
            await audit.log_create("account", account.id, {
                "name": account.name,
                "account_type": account_type,
                "currency": currency,
            })

        logger.info(f"Created account {account.id} ({account.name}) for user {user_id}")
        return account

    async def get_account(self, account_id: str, user_id: str) -> Account:
        account = (await self.db.execute(
            select(Account)
            .where(Account.id == account_id, Account.user_id == user_id)
            .execution_options(populate_existing=True)
        )).scalar_one_or_none()
        if not account:
            raise NotFoundError(f"Account {account_id} not found")
        return account

    async def list_accounts(self, user_id: str, include_hidden: bool = True) -> List[Account]:
        query = select(Account).where(Account.user_id == user_id)
        if not include_hidden:
            query = query.where(Account.hidden.is_(False))
        result = await self.db.execute(
            query.order_by(Account.created_at).execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def delete_account(self, account_id: str, user_id: str) -> None:
        """Delete an account that no flow or transfer references."""
        audit = AuditService(self.db, user_id=user_id, source=self.source)
        async with atomic(self.db):
            account = await self.get_account(account_id, user_id)

            flow_refs = (await self.db.execute(
                select(func.count()).select_from(Flow).where(Flow.account_id == account_id)
            )).scalar() or 0
            transfer_refs = (await self.db.execute(
                select(func.count()).select_from(Transfer).where(
                    or_(Transfer.from_account_id == account_id, Transfer.to_account_id == account_id)
                )
            )).scalar() or 0
            if flow_refs or transfer_refs:
                raise InvalidArgumentError(
                    f"Account {account_id} is still referenced by {flow_refs} flows "
                    f"and {transfer_refs} transfers"
                )

            name = account.name
            await self.db.execute(delete(Account).where(Account.id == account_id))
            await audit.log_delete("account", account_id, {"name": name})

        logger.info(f"Deleted account {account_id}")

