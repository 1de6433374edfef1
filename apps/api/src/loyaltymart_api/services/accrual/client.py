"""HTTP client polling the accrual service for order results."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping, Union

import httpx
from loguru import logger

from loyaltymart_api.models.order import OrderStatusEnum

DEFAULT_RETRY_AFTER_SECONDS = 60


@dataclass(frozen=True, slots=True)
class AccrualOrderSnapshot:
    """Order state reported by the accrual service."""

    number: str
    status: OrderStatusEnum
    accrual: Decimal


@dataclass(frozen=True, slots=True)
class NotYetAvailable:
    """The accrual service has no data for the order (yet)."""

    status_code: int


@dataclass(frozen=True, slots=True)
class RateLimited:
    retry_after_seconds: float


@dataclass(frozen=True, slots=True)
class TransientFailure:
    reason: str


AccrualPollResult = Union[AccrualOrderSnapshot, NotYetAvailable, RateLimited, TransientFailure]


def parse_retry_after(value: str | None, default: int = DEFAULT_RETRY_AFTER_SECONDS) -> float:
    """Interpret a ``Retry-After`` header expressed in seconds."""

    if value is None:
        return float(default)
    try:
        seconds = float(value.strip())
    except ValueError:
        return float(default)
    if seconds < 0:
        return float(default)
    return seconds


def _decode_snapshot(number: str, payload: Mapping[str, Any]) -> AccrualOrderSnapshot:
    raw_status = payload.get("status")
    if not isinstance(raw_status, str):
        raise ValueError("missing status")
    status = OrderStatusEnum(raw_status.upper())
    raw_accrual = payload.get("accrual")
    try:
        accrual = Decimal(str(raw_accrual)) if raw_accrual is not None else Decimal("0")
    except InvalidOperation as exc:
        raise ValueError(f"invalid accrual {raw_accrual!r}") from exc
    if not accrual.is_finite() or accrual < 0:
        raise ValueError(f"accrual out of range: {raw_accrual!r}")
    reported_number = payload.get("order")
    return AccrualOrderSnapshot(
        number=str(reported_number) if reported_number else number,
        status=status,
        accrual=accrual,
    )


class AccrualClient:
    """Translate ``GET /api/orders/{number}`` responses into typed poll results."""

    def __init__(
        self,
        base_url: str,
        *,
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 5.0,
        default_retry_after_seconds: int = DEFAULT_RETRY_AFTER_SECONDS,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_seconds
        self._default_retry_after = default_retry_after_seconds
        self._owns_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout_seconds)

    @property
    def base_url(self) -> str:
        return self._base_url

    async def fetch_order(self, number: str) -> AccrualPollResult:
        url = f"{self._base_url}/api/orders/{number}"
        try:
            response = await self._http_client.get(url, timeout=self._timeout)
        except httpx.TimeoutException:
            logger.warning("Accrual request timed out", order_number=number, timeout=self._timeout)
            return TransientFailure(reason="timeout")
        except httpx.HTTPError as exc:
            logger.warning("Accrual request failed", order_number=number, error=str(exc))
            return TransientFailure(reason=f"transport_error:{exc.__class__.__name__}")

        status_code = response.status_code
        if status_code == httpx.codes.OK:
            try:
                payload = response.json()
                if not isinstance(payload, Mapping):
                    raise ValueError("payload is not an object")
                return _decode_snapshot(number, payload)
            except ValueError as exc:
                logger.warning("Accrual response could not be decoded", order_number=number, error=str(exc))
                return TransientFailure(reason="invalid_payload")

        if status_code in (httpx.codes.NO_CONTENT, httpx.codes.NOT_FOUND):
            return NotYetAvailable(status_code=status_code)

        if status_code == httpx.codes.TOO_MANY_REQUESTS:
            retry_after = parse_retry_after(response.headers.get("Retry-After"), self._default_retry_after)
            return RateLimited(retry_after_seconds=retry_after)

        return TransientFailure(reason=f"http_{status_code}")

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http_client.aclose()


__all__ = [
    "AccrualClient",
    "AccrualOrderSnapshot",
    "AccrualPollResult",
    "DEFAULT_RETRY_AFTER_SECONDS",
    "NotYetAvailable",
    "RateLimited",
    "TransientFailure",
    "parse_retry_after",
]
