"""KryptoGO crypto payment-intent adapter.

create_intent opens an on-chain payment intent and returns its deposit
address (plus hosted payment page). The buyer's transaction hash is the
verification proof: the intent is re-queried and must report
status "success" with the same tx hash.

Webhook: POST /payment/webhook, header X-KryptoGO-Signature (HMAC-SHA256 hex),
body {"payment_intent_id", "status", "tx_hash"}.
"""

import logging
import os
from decimal import Decimal
from typing import Optional

import httpx

from planner_api.billing.base import IntentResult, PaymentProvider, VerificationResult
from planner_api.billing.ledger import PaymentRecord
from planner_api.errors import ConfigurationError, UpstreamError
from planner_api.utils.money import format_amount

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.kryptogo.com"


class KryptoGOProvider(PaymentProvider):
    """KryptoGO payment API client.

    Environment Variables:
    - KRYPTOGO_CLIENT_ID: merchant client id
    - KRYPTOGO_API_SECRET: API secret
    - KRYPTOGO_API_BASE_URL: API base (default https://api.kryptogo.com)
    """

    name = "kryptogo"
    supported_currencies = frozenset({"USD", "TWD", "USDT", "USDC"})

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__(transport)
        self.client_id = os.getenv("KRYPTOGO_CLIENT_ID")
        self.api_secret = os.getenv("KRYPTOGO_API_SECRET")

        if not self.client_id or not self.api_secret:
            raise ConfigurationError(
                "KRYPTOGO_CLIENT_ID and KRYPTOGO_API_SECRET are required. "
                "Set them in environment configuration."
            )
        self.base_url = (os.getenv("KRYPTOGO_API_BASE_URL") or DEFAULT_BASE_URL).rstrip("/")

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "X-Client-ID": self.client_id,
            "X-API-Secret": self.api_secret,
        }

    async def create_intent(
        self,
        payment_id: str,
        report_id: str,
        amount: Decimal,
        currency: str,
    ) -> IntentResult:
        self.check_currency(currency)
        body = {
            "amount": format_amount(amount),
            "currency": currency,
            "metadata": {"payment_id": payment_id, "report_id": report_id},
        }

        try:
            async with self.http_client() as client:
                response = await client.post(
                    f"{self.base_url}/v1/payment/intent", headers=self._headers(), json=body
                )
                response.raise_for_status()
                result = response.json()
        except httpx.HTTPError as exc:
            raise self.map_http_error(exc, "intent") from exc

        data = result.get("data") or result
        intent_id = data.get("payment_intent_id")
        address = data.get("payment_address")
        payment_url = data.get("payment_url")
        if not intent_id or not (address or payment_url):
            raise UpstreamError("Invalid payment intent response from KryptoGO", provider=self.name)

        logger.info(
            "KryptoGO payment intent created",
            extra={
                "event": "kryptogo.intent.created",
                "payment_intent_id": intent_id,
                "payment_id": payment_id,
            },
        )
        return IntentResult(
            provider_reference=str(intent_id),
            redirect_url=payment_url,
            deposit_address=address,
        )

    async def get_intent(self, intent_id: str) -> dict:
        try:
            async with self.http_client() as client:
                response = await client.get(
                    f"{self.base_url}/v1/payment/intent/{intent_id}", headers=self._headers()
                )
                response.raise_for_status()
                result = response.json()
        except httpx.HTTPError as exc:
            raise self.map_http_error(exc, "intent") from exc
        return result.get("data") or result

    async def verify(self, record: PaymentRecord, proof: str) -> VerificationResult:
        """Confirm a transaction hash against the record's payment intent."""
        if not record.provider_reference:
            return VerificationResult(confirmed=False, provider_status="no_intent")

        intent = await self.get_intent(record.provider_reference)
        status = str(intent.get("status") or "unknown")
        tx_hash = intent.get("tx_hash")

        confirmed = status == "success" and bool(tx_hash) and str(tx_hash).lower() == proof.strip().lower()
        if status == "success" and not confirmed:
            logger.warning(
                "KryptoGO transaction hash does not match payment intent",
                extra={
                    "event": "kryptogo.verify.tx_mismatch",
                    "payment_id": record.id,
                    "payment_intent_id": record.provider_reference,
                    "fraud_flag": True,
                },
            )

        return VerificationResult(
            confirmed=confirmed,
            provider_status=status,
            provider_reference=record.provider_reference,
        )
