"""
HTTP client for the driver-facing RPC surface.

Maps every failure onto the shared error taxonomy so the modal controller
can tell retryable transport trouble (timeouts, connection failures,
503/504, rate limiting) from errors that make the offer stale.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from orderclaim.domain.entities import Order
from orderclaim.domain.enums import ClaimOutcome
from orderclaim.domain.errors import (
    ERRORS_BY_CODE,
    ClaimError,
    DeadlineExceeded,
    Internal,
    Unavailable,
)

logger = logging.getLogger(__name__)

_RETRYABLE_STATUS = {
    429: Unavailable,
    502: Unavailable,
    503: Unavailable,
    504: DeadlineExceeded,
}


def _error_from_response(response: httpx.Response) -> ClaimError:
    try:
        body = response.json()
    except ValueError:
        body = {}
    message = body.get("message") if isinstance(body, dict) else None
    code = body.get("code") if isinstance(body, dict) else None
    if code in ERRORS_BY_CODE:
        return ERRORS_BY_CODE[code](message)
    return _RETRYABLE_STATUS.get(response.status_code, Internal)(message)


class ClaimClient:
    def __init__(
        self,
        base_url: str,
        token: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._http = httpx.AsyncClient(
            base_url=base_url,
            headers={"Authorization": f"Bearer {token}"},
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "ClaimClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def claim_order(self, order_id: str) -> ClaimOutcome:
        data = await self._request("POST", f"/api/v1/orders/{order_id}/claim")
        if data.get("success"):
            return ClaimOutcome.SUCCESS
        if data.get("alreadyTaken"):
            return ClaimOutcome.ALREADY_TAKEN
        raise Internal(data.get("message") or "Failed to claim order")

    async def reject_order(self, order_id: str) -> ClaimOutcome:
        data = await self._request("POST", f"/api/v1/orders/{order_id}/reject")
        if data.get("success"):
            return ClaimOutcome.SUCCESS
        raise Internal(data.get("message") or "Failed to reject order")

    async def get_order(self, order_id: str) -> Order:
        data = await self._request("GET", f"/api/v1/orders/{order_id}")
        try:
            return Order.from_dict(data)
        except (KeyError, TypeError, ValueError) as exc:
            raise Internal("Malformed order payload") from exc

    async def go_online(self) -> bool:
        data = await self._request("POST", "/api/v1/drivers/me/online")
        return bool(data.get("is_active"))

    async def go_offline(self) -> bool:
        data = await self._request("POST", "/api/v1/drivers/me/offline")
        return bool(data.get("is_active"))

    async def complete_order(self, order_id: str) -> None:
        await self._request("POST", f"/api/v1/drivers/me/orders/{order_id}/complete")

    async def _request(self, method: str, url: str) -> dict[str, Any]:
        try:
            response = await self._http.request(method, url)
        except httpx.TimeoutException as exc:
            logger.warning("%s %s timed out", method, url)
            raise DeadlineExceeded() from exc
        except httpx.TransportError as exc:
            logger.warning("%s %s failed: %s", method, url, exc)
            raise Unavailable() from exc

        if response.is_success:
            return response.json()
        raise _error_from_response(response)
