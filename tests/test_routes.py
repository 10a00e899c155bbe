"""HTTP-level tests: status codes, error payloads and money serialization."""
import pytest
import pytest_asyncio
from decimal import Decimal

from httpx import ASGITransport, AsyncClient
from sqlalchemy import delete

from cashbook.database import get_db
from cashbook.main import app
from cashbook.models.ledger import Flow

from conftest import BOOK_ID, DAY, USER_ID

PARAMS = {"user_id": USER_ID}


@pytest_asyncio.fixture
async def client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


async def create_account(client, name: str, opening: str = None) -> str:
    response = await client.post("/api/accounts", params=PARAMS, json={"name": name})
    assert response.status_code == 200
    account_id = response.json()["id"]
    if opening:
        response = await client.post("/api/flows", params=PARAMS, json={
            "book_id": BOOK_ID,
            "day": DAY.isoformat(),
            "flow_type": "income",
            "amount": opening,
            "account_id": account_id,
            "category": "opening",
        })
        assert response.status_code == 200
    return account_id


async def balance_of(client, account_id: str) -> Decimal:
    response = await client.get(f"/api/accounts/{account_id}", params=PARAMS)
    assert response.status_code == 200
    return Decimal(response.json()["balance"])


def transfer_body(from_id: str, to_id: str, amount: str, **extra) -> dict:
    body = {
        "book_id": BOOK_ID,
        "day": DAY.isoformat(),
        "from_account_id": from_id,
        "to_account_id": to_id,
        "amount": amount,
    }
    body.update(extra)
    return body


# =============================================================================
# Service endpoints
# =============================================================================

@pytest.mark.asyncio
async def test_health_and_root(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}

    response = await client.get("/")
    assert response.json()["message"] == "Cashbook API"


# =============================================================================
# Transfers
# =============================================================================

@pytest.mark.asyncio
async def test_transfer_lifecycle(client):
    cash = await create_account(client, "Cash", opening="1000")
    receivable = await create_account(client, "Receivable (Alice)")

    response = await client.post("/api/transfers", params=PARAMS, json=transfer_body(
        cash, receivable, "200", transfer_type="loan", loan_type="lend", counterparty="Alice",
    ))
    assert response.status_code == 200
    body = response.json()
    # Money is serialized as a decimal string, never a float
    assert body["amount"] == "200.00"
    assert body["loan_type"] == "lend"
    transfer_id = body["id"]

    assert await balance_of(client, cash) == Decimal("800")
    assert await balance_of(client, receivable) == Decimal("200")

    response = await client.put(f"/api/transfers/{transfer_id}", params=PARAMS, json={"amount": "150"})
    assert response.status_code == 200
    assert response.json()["id"] == transfer_id
    assert await balance_of(client, cash) == Decimal("850")

    response = await client.get("/api/transfers", params={**PARAMS, "transfer_type": "loan"})
    assert response.status_code == 200
    page = response.json()
    assert page["total"] == 1
    assert Decimal(page["data"][0]["amount"]) == Decimal("150")

    response = await client.delete(f"/api/transfers/{transfer_id}", params=PARAMS)
    assert response.status_code == 200
    assert await balance_of(client, cash) == Decimal("1000")
    assert await balance_of(client, receivable) == Decimal("0")

    response = await client.get(f"/api/transfers/{transfer_id}", params=PARAMS)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_invalid_transfer_is_400(client):
    cash = await create_account(client, "Cash", opening="10")

    response = await client.post("/api/transfers", params=PARAMS, json=transfer_body(cash, cash, "5"))

    assert response.status_code == 400
    assert "must differ" in response.json()["detail"]
    assert await balance_of(client, cash) == Decimal("10")


@pytest.mark.asyncio
async def test_unknown_account_is_404(client):
    cash = await create_account(client, "Cash", opening="10")

    response = await client.post("/api/transfers", params=PARAMS, json=transfer_body(cash, "acct_nope", "5"))

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_other_users_transfer_is_404(client):
    cash = await create_account(client, "Cash", opening="10")
    bank = await create_account(client, "Bank")
    response = await client.post("/api/transfers", params=PARAMS, json=transfer_body(cash, bank, "5"))
    transfer_id = response.json()["id"]

    response = await client.delete(f"/api/transfers/{transfer_id}", params={"user_id": "someone_else"})

    assert response.status_code == 404
    assert await balance_of(client, bank) == Decimal("5")


@pytest.mark.asyncio
async def test_broken_pair_is_409_with_repaired_accounts(client, db):
    cash = await create_account(client, "Cash", opening="10")
    bank = await create_account(client, "Bank")
    response = await client.post("/api/transfers", params=PARAMS, json=transfer_body(cash, bank, "5"))
    transfer_id = response.json()["id"]
    await db.execute(delete(Flow).where(Flow.transfer_id == transfer_id, Flow.flow_type == "income"))
    await db.commit()

    response = await client.delete(f"/api/transfers/{transfer_id}", params=PARAMS)

    assert response.status_code == 409
    detail = response.json()["detail"]
    assert detail["repaired_account_ids"] == sorted([cash, bank])
    assert await balance_of(client, bank) == Decimal("0")
    assert await balance_of(client, cash) == Decimal("5")


@pytest.mark.asyncio
async def test_bad_page_is_rejected(client):
    response = await client.get("/api/transfers", params={**PARAMS, "page": 0})

    assert response.status_code == 422


# =============================================================================
# Flows and accounts
# =============================================================================

@pytest.mark.asyncio
async def test_editing_a_transfer_half_is_400(client):
    cash = await create_account(client, "Cash", opening="10")
    bank = await create_account(client, "Bank")
    await client.post("/api/transfers", params=PARAMS, json=transfer_body(cash, bank, "5"))
    flows = (await client.get("/api/flows", params={**PARAMS, "account_id": bank})).json()
    half_id = flows[0]["id"]

    response = await client.put(f"/api/flows/{half_id}", params=PARAMS, json={"amount": "1"})

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_referenced_account_cannot_be_deleted(client):
    cash = await create_account(client, "Cash", opening="10")
    empty = await create_account(client, "Empty")

    response = await client.delete(f"/api/accounts/{cash}", params=PARAMS)
    assert response.status_code == 400

    response = await client.delete(f"/api/accounts/{empty}", params=PARAMS)
    assert response.status_code == 200
    assert response.json() == {"message": "Account deleted successfully"}


# =============================================================================
# Maintenance and loans
# =============================================================================

@pytest.mark.asyncio
async def test_maintenance_endpoints(client, ledger):
    cash = await create_account(client, "Cash", opening="100")
    await ledger.set_balance(cash, "3")

    response = await client.get("/api/maintenance/balances", params=PARAMS)
    assert response.status_code == 200
    report = response.json()
    assert report["drifted_count"] == 1
    assert Decimal(report["drifted"][0]["difference"]) == Decimal("-97")

    response = await client.get(f"/api/maintenance/balances/{cash}", params={"user_id": "someone_else"})
    assert response.status_code == 404

    response = await client.post("/api/maintenance/recalc-balances", params=PARAMS)
    assert response.status_code == 200
    assert response.json()["updated"] == 1
    assert await balance_of(client, cash) == Decimal("100")

    response = await client.get("/api/maintenance/transfers/integrity", params=PARAMS)
    assert response.json()["is_consistent"] is True

    response = await client.post("/api/maintenance/cleanup", params=PARAMS)
    assert response.status_code == 400

    response = await client.post("/api/maintenance/cleanup", params={**PARAMS, "confirm": "true"})
    assert response.status_code == 200
    assert response.json()["deleted_transfer_ids"] == []


@pytest.mark.asyncio
async def test_loan_endpoints(client, ledger):
    cash = await create_account(client, "Cash", opening="100")
    receivable = await create_account(client, "Receivable")
    await ledger.legacy_flow(cash, "expense", "40", counterparty="Bob")
    await ledger.legacy_flow(receivable, "income", "40", counterparty="Bob")

    response = await client.get("/api/loans/validate", params=PARAMS)
    assert response.status_code == 200
    assert response.json()["needs_processing"] is True

    response = await client.post("/api/loans/process", params=PARAMS)
    assert response.status_code == 200
    assert response.json()["success"] == 2

    response = await client.post("/api/loans/consolidate", params=PARAMS)
    assert response.json()["total_merged"] == 0

    response = await client.get("/api/loans/statistics", params=PARAMS)
    assert response.json()["total_count"] == 2
    assert await balance_of(client, cash) == Decimal("60")


@pytest.mark.asyncio
async def test_loan_processing_leaves_no_drift(client, ledger):
    cash = await create_account(client, "Cash", opening="100")
    receivable = await create_account(client, "Receivable")
    await ledger.legacy_flow(cash, "expense", "40", counterparty="Bob")
    await ledger.legacy_flow(receivable, "income", "40", counterparty="Bob")
    await ledger.set_balance(cash, "5")

    response = await client.post("/api/loans/process", params=PARAMS)
    assert response.status_code == 200
    assert response.json()["recalc"]["updated"] == 1

    response = await client.get("/api/maintenance/balances", params=PARAMS)
    assert response.json()["drifted_count"] == 0
    assert await balance_of(client, cash) == Decimal("60")
