from __future__ import annotations

from decimal import Decimal

import httpx
import pytest

from loyaltymart_api.models.order import OrderStatusEnum
from loyaltymart_api.services.accrual.client import (
    AccrualClient,
    AccrualOrderSnapshot,
    NotYetAvailable,
    RateLimited,
    TransientFailure,
    parse_retry_after,
)


def _client(handler) -> tuple[AccrualClient, httpx.AsyncClient]:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return AccrualClient("http://accrual.test/", http_client=http_client), http_client


@pytest.mark.asyncio
async def test_processed_order_is_decoded():
    seen_paths = []

    async def handler(request: httpx.Request) -> httpx.Response:
        seen_paths.append(request.url.path)
        return httpx.Response(200, json={"order": "79927398713", "status": "PROCESSED", "accrual": 200.5})

    client, http_client = _client(handler)
    result = await client.fetch_order("79927398713")
    await http_client.aclose()

    assert seen_paths == ["/api/orders/79927398713"]
    assert result == AccrualOrderSnapshot(
        number="79927398713",
        status=OrderStatusEnum.PROCESSED,
        accrual=Decimal("200.5"),
    )


@pytest.mark.asyncio
async def test_pending_order_without_accrual_defaults_to_zero():
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"order": "18", "status": "PROCESSING"})

    client, http_client = _client(handler)
    result = await client.fetch_order("18")
    await http_client.aclose()

    assert isinstance(result, AccrualOrderSnapshot)
    assert result.status is OrderStatusEnum.PROCESSING
    assert result.accrual == Decimal("0")


@pytest.mark.asyncio
@pytest.mark.parametrize("status_code", [204, 404])
async def test_unknown_order_is_not_yet_available(status_code):
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code)

    client, http_client = _client(handler)
    result = await client.fetch_order("18")
    await http_client.aclose()

    assert result == NotYetAvailable(status_code=status_code)


@pytest.mark.asyncio
async def test_rate_limit_uses_retry_after_header():
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, headers={"Retry-After": "17"}, text="No more than 10 requests per minute allowed")

    client, http_client = _client(handler)
    result = await client.fetch_order("18")
    await http_client.aclose()

    assert result == RateLimited(retry_after_seconds=17.0)


@pytest.mark.asyncio
async def test_rate_limit_without_header_falls_back_to_default():
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429)

    client, http_client = _client(handler)
    result = await client.fetch_order("18")
    await http_client.aclose()

    assert result == RateLimited(retry_after_seconds=60.0)


@pytest.mark.asyncio
async def test_server_error_is_transient():
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503)

    client, http_client = _client(handler)
    result = await client.fetch_order("18")
    await http_client.aclose()

    assert result == TransientFailure(reason="http_503")


@pytest.mark.asyncio
async def test_timeout_is_transient():
    async def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    client, http_client = _client(handler)
    result = await client.fetch_order("18")
    await http_client.aclose()

    assert result == TransientFailure(reason="timeout")


@pytest.mark.asyncio
async def test_connection_error_is_transient():
    async def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    client, http_client = _client(handler)
    result = await client.fetch_order("18")
    await http_client.aclose()

    assert result == TransientFailure(reason="transport_error:ConnectError")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body",
    [
        b"not json",
        b'["PROCESSED"]',
        b'{"order": "18", "status": "DONE"}',
        b'{"order": "18", "status": "PROCESSED", "accrual": "lots"}',
        b'{"order": "18", "status": "PROCESSED", "accrual": -1}',
        b'{"order": "18", "status": "PROCESSED", "accrual": NaN}',
        b'{"order": "18", "status": "PROCESSED", "accrual": "NaN"}',
        b'{"order": "18", "status": "PROCESSED", "accrual": "Infinity"}',
    ],
)
async def test_undecodable_body_is_transient(body):
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=body, headers={"Content-Type": "application/json"})

    client, http_client = _client(handler)
    result = await client.fetch_order("18")
    await http_client.aclose()

    assert result == TransientFailure(reason="invalid_payload")


@pytest.mark.parametrize(
    ("value", "expected"),
    [(None, 60.0), ("", 60.0), ("abc", 60.0), ("-5", 60.0), ("0", 0.0), (" 30 ", 30.0)],
)
def test_parse_retry_after(value, expected):
    assert parse_retry_after(value) == expected
