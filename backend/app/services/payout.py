"""Prize transfer capability used by the settlement engine."""

from __future__ import annotations

from typing import Protocol

import httpx
from loguru import logger

from app.core.config import Settings, get_settings

from .errors import PayoutError


class PayoutClient(Protocol):
    def send(self, wallet: str, amount: float, token: str, *, reference: str) -> str:
        """Transfer ``amount`` to ``wallet`` and return the transaction reference."""
        ...


class TreasuryPayoutClient:
    """Submit transfers to the treasury service that signs on-chain transactions."""

    def __init__(
        self,
        *,
        settings: Settings | None = None,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        configured_url = base_url or self.settings.payout_api_url
        self.url = str(configured_url) if configured_url else None
        self.api_key = api_key or self.settings.payout_api_key
        self.timeout = timeout or self.settings.payout_timeout_seconds
        self.client = httpx.Client(timeout=self.timeout, transport=transport)

    def send(self, wallet: str, amount: float, token: str, *, reference: str) -> str:
        if not self.url:
            raise PayoutError("Payout endpoint is not configured")

        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        payload = {
            "to": wallet,
            "amount": amount,
            "token": token,
            "reference": reference,
        }
        logger.info("Treasury POST {} to={} amount={} {}", self.url, wallet, amount, token)
        try:
            response = self.client.post(self.url, json=payload, headers=headers)
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPError as exc:
            raise PayoutError(f"Treasury request failed: {exc}") from exc
        except ValueError as exc:
            raise PayoutError("Treasury returned a non-JSON response") from exc

        if isinstance(body, dict) and body.get("ok") is False:
            raise PayoutError(str(body.get("error") or "Treasury rejected the transfer"))
        tx_ref = None
        if isinstance(body, dict):
            tx_ref = body.get("txHash") or body.get("tx_hash") or body.get("reference")
        if not tx_ref:
            raise PayoutError("Treasury response did not include a transaction reference")
        return str(tx_ref)

    def close(self) -> None:
        self.client.close()

    def __enter__(self) -> "TreasuryPayoutClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
