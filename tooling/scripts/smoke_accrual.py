#!/usr/bin/env python3
"""Smoke test for the order → accrual → balance flow.

Usage (HTTP, both services already running):
    python tooling/scripts/smoke_accrual.py --mart-url http://localhost:8080 --accrual-url http://localhost:8081

Usage (in-process, no network sockets required):
    python tooling/scripts/smoke_accrual.py --in-process

The script checks:
1. Both services answer `/healthz`
2. A reward mechanic and an accrual order can be registered
3. A mart user can submit the same order number
4. The order reaches PROCESSED and the balance is credited
"""

from __future__ import annotations

import argparse
import asyncio
import sys
import tempfile
import uuid
from pathlib import Path
from typing import Any

import httpx
from httpx import ASGITransport

ORDER_NUMBER = "79927398713"


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Loyaltymart accrual smoke test")
    parser.add_argument("--mart-url", default="http://localhost:8080", help="Base URL of the mart service")
    parser.add_argument("--accrual-url", default="http://localhost:8081", help="Base URL of the accrual service")
    parser.add_argument("--timeout", type=float, default=60.0, help="Seconds to wait for the order to settle")
    parser.add_argument(
        "--order",
        default=ORDER_NUMBER,
        help="Luhn-valid order number to register (must be unused on the accrual service)",
    )
    parser.add_argument(
        "--in-process",
        action="store_true",
        help="Run both services as ASGI apps without binding network sockets.",
    )
    return parser.parse_args()


async def _expect(response: httpx.Response, *statuses: int) -> httpx.Response:
    if response.status_code not in statuses:
        raise RuntimeError(
            f"{response.request.method} {response.request.url} returned {response.status_code}: {response.text}"
        )
    return response


async def _run_checks(
    mart: httpx.AsyncClient,
    accrual: httpx.AsyncClient,
    order_number: str,
    timeout: float,
) -> dict[str, Any]:
    for client in (mart, accrual):
        health = (await _expect(await client.get("/healthz"), 200)).json()
        if health.get("status") != "ok":
            raise RuntimeError(f"Unexpected health response: {health}")

    match = f"Smoke{uuid.uuid4().hex[:8]}"
    await _expect(
        await accrual.post("/api/goods", json={"match": match, "reward": 10, "reward_type": "%"}),
        200,
    )
    await _expect(
        await accrual.post(
            "/api/orders",
            json={"order": order_number, "goods": [{"description": f"{match} Drill 2000", "price": 2000}]},
        ),
        202,
    )

    user = (
        await _expect(await mart.post("/api/user/register", json={"login": f"smoke-{uuid.uuid4().hex[:8]}"}), 201)
    ).json()
    headers = {"X-Session-User": user["id"]}
    await _expect(
        await mart.post(
            "/api/user/orders",
            content=order_number,
            headers={**headers, "Content-Type": "text/plain"},
        ),
        202,
    )

    deadline = asyncio.get_running_loop().time() + timeout
    while True:
        order = (await _expect(await mart.get(f"/api/user/orders/{order_number}", headers=headers), 200)).json()
        if order["status"] in ("PROCESSED", "INVALID"):
            break
        if asyncio.get_running_loop().time() > deadline:
            raise RuntimeError(f"Order {order_number} still {order['status']} after {timeout:.0f}s")
        await asyncio.sleep(0.5)

    balance = (await _expect(await mart.get("/api/user/balance", headers=headers), 200)).json()
    if order["status"] != "PROCESSED" or balance["current"] != order.get("accrual"):
        raise RuntimeError(f"Unexpected settlement: order={order} balance={balance}")
    return order


async def run_http(mart_url: str, accrual_url: str, order_number: str, timeout: float) -> dict[str, Any]:
    async with httpx.AsyncClient(base_url=mart_url, timeout=10.0) as mart, httpx.AsyncClient(
        base_url=accrual_url, timeout=10.0
    ) as accrual:
        return await _run_checks(mart, accrual, order_number, timeout)


async def run_in_process(order_number: str, timeout: float) -> dict[str, Any]:
    repo_root = Path(__file__).resolve().parents[2]
    api_src = repo_root / "apps" / "api" / "src"
    if str(api_src) not in sys.path:
        sys.path.insert(0, str(api_src))

    from loyaltymart_api.app import create_accrual_app, create_app  # type: ignore import-position
    from loyaltymart_api.core.settings import Settings  # type: ignore import-position
    from loyaltymart_api.services.accrual import AccrualClient  # type: ignore import-position

    with tempfile.TemporaryDirectory() as workdir:
        config = Settings(
            database_url=f"sqlite+aiosqlite:///{workdir}/mart.db",
            accrual_database_url=f"sqlite+aiosqlite:///{workdir}/accrual.db",
            tracing_enabled=False,
            accrual_processing_delay_seconds=0.2,
            accrual_processed_delay_seconds=0.2,
            accrual_poll_interval_seconds=0.2,
            accrual_retry_interval_seconds=0.2,
            reconciliation_sweep_enabled=False,
        )
        accrual_app = create_accrual_app(config=config)
        accrual_transport = ASGITransport(app=accrual_app)
        poller_http = httpx.AsyncClient(transport=accrual_transport, base_url="http://accrual")
        mart_app = create_app(
            config=config,
            accrual_client=AccrualClient("http://accrual", http_client=poller_http),
        )

        async with accrual_app.router.lifespan_context(accrual_app), mart_app.router.lifespan_context(mart_app):
            async with httpx.AsyncClient(
                transport=ASGITransport(app=mart_app), base_url="http://mart"
            ) as mart, httpx.AsyncClient(transport=accrual_transport, base_url="http://accrual") as accrual:
                try:
                    return await _run_checks(mart, accrual, order_number, timeout)
                finally:
                    await poller_http.aclose()


def main() -> int:
    args = parse_args()

    if args.in_process:
        order = asyncio.run(run_in_process(args.order, args.timeout))
    else:
        order = asyncio.run(run_http(args.mart_url, args.accrual_url, args.order, args.timeout))

    print(f"Accrual smoke test passed ✅ Order {order['number']} processed with accrual {order.get('accrual')}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
