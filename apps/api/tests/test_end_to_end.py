from __future__ import annotations

import asyncio

import httpx
import pytest
import pytest_asyncio

from loyaltymart_api.app import create_app
from loyaltymart_api.services.accrual import AccrualClient, AccrualOrderStore

ORDER = "79927398713"


@pytest_asyncio.fixture
async def linked_mart_client(accrual_app, make_session_factory, test_settings):
    """Mart app whose poller talks to the in-process accrual app."""

    poller_http = httpx.AsyncClient(transport=httpx.ASGITransport(app=accrual_app), base_url="http://accrual")
    app = create_app(
        config=test_settings,
        session_factory=await make_session_factory("mart"),
        accrual_client=AccrualClient("http://accrual", http_client=poller_http),
    )
    async with app.router.lifespan_context(app):
        async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://mart") as client:
            yield client
    await poller_http.aclose()


async def _wait_for_accrual(app, number: str, timeout: float = 5.0) -> None:
    """Let the accrual side settle first so the mart poller stays under the rate limit."""

    deadline = asyncio.get_running_loop().time() + timeout
    while True:
        async with app.state.session_factory() as session:
            order = await AccrualOrderStore(session).get_order(number)
        if order is not None and order.status.value == "PROCESSED":
            return
        assert asyncio.get_running_loop().time() < deadline, "accrual order never processed"
        await asyncio.sleep(0.02)


async def _wait_for_terminal(client, headers, number: str, timeout: float = 10.0) -> dict:
    deadline = asyncio.get_running_loop().time() + timeout
    while True:
        order = (await client.get(f"/api/user/orders/{number}", headers=headers)).json()
        if order["status"] in ("PROCESSED", "INVALID"):
            return order
        assert asyncio.get_running_loop().time() < deadline, f"order stuck in {order['status']}"
        await asyncio.sleep(0.05)


@pytest.mark.asyncio
async def test_order_accrual_credits_balance_once(accrual_app, accrual_client, linked_mart_client):
    await accrual_client.post("/api/goods", json={"match": "Bosch", "reward": 10, "reward_type": "%"})
    registered = await accrual_client.post(
        "/api/orders",
        json={"order": ORDER, "goods": [{"description": "Bosch Drill 2000", "price": 2000}]},
    )
    assert registered.status_code == 202
    await _wait_for_accrual(accrual_app, ORDER)

    user = (await linked_mart_client.post("/api/user/register", json={"login": "alice"})).json()
    headers = {"X-Session-User": user["id"]}
    submitted = await linked_mart_client.post(
        "/api/user/orders",
        content=ORDER,
        headers={**headers, "Content-Type": "text/plain"},
    )
    assert submitted.status_code == 202

    order = await _wait_for_terminal(linked_mart_client, headers, ORDER)
    assert order["status"] == "PROCESSED"
    assert order["accrual"] == 200.0

    resubmitted = await linked_mart_client.post(
        "/api/user/orders",
        content=ORDER,
        headers={**headers, "Content-Type": "text/plain"},
    )
    assert resubmitted.status_code == 200

    balance = (await linked_mart_client.get("/api/user/balance", headers=headers)).json()
    assert balance == {"current": 200.0, "withdrawn": 0.0}
