import logging
from dataclasses import dataclass
from typing import Protocol

import httpx

from app.core.errors import PermanentError, TransientError

logger = logging.getLogger(__name__)

_TRANSIENT_STATUS = {408, 425, 429, 500, 502, 503, 504}


@dataclass(frozen=True)
class TransferResult:
    transaction_ref: str


class FundsTransfer(Protocol):
    async def transfer(
        self, destination_address: str, amount: int, idempotency_token: str
    ) -> TransferResult: ...


class HttpTransferClient:
    """
    Funds-transfer gateway over HTTP. Amounts are sent in minor units.
    The gateway deduplicates on the Idempotency-Key header.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        currency: str = "USD",
        timeout: float = 15.0,
        client: httpx.AsyncClient | None = None,
    ):
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self.currency = currency
        self._client = client or httpx.AsyncClient(base_url=base_url, headers=headers, timeout=timeout)

    async def transfer(
        self, destination_address: str, amount: int, idempotency_token: str
    ) -> TransferResult:
        try:
            resp = await self._client.post(
                "/v1/transfers",
                json={
                    "destination": destination_address,
                    "amount": amount,
                    "currency": self.currency,
                },
                headers={"Idempotency-Key": idempotency_token},
            )
        except httpx.TransportError as e:
            raise TransientError(f"Transfer gateway unreachable: {e}") from e

        if resp.status_code in _TRANSIENT_STATUS:
            raise TransientError(f"Transfer gateway returned {resp.status_code}")
        if resp.status_code >= 400:
            detail = _error_detail(resp)
            raise PermanentError(f"Transfer rejected ({resp.status_code}): {detail}")

        try:
            data = resp.json()
        except ValueError as e:
            raise TransientError("Transfer gateway returned a malformed response") from e
        ref = (data.get("transaction_ref") or data.get("id")) if isinstance(data, dict) else None
        if not ref:
            raise TransientError("Transfer gateway response is missing a transaction reference")
        logger.info(f"Transfer {idempotency_token[:12]} accepted as {ref}")
        return TransferResult(transaction_ref=str(ref))

    async def aclose(self) -> None:
        await self._client.aclose()


def _error_detail(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text
    if isinstance(body, dict):
        return str(body.get("error", resp.text))
    return resp.text
