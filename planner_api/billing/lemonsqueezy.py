"""Lemon Squeezy checkout adapter.

Fixed-price checkout redirect: create_intent opens a hosted checkout for the
configured store/variant and returns its URL; the buyer's order id is the
verification proof.

Lemon Squeezy API Reference:
- Checkouts: https://docs.lemonsqueezy.com/api/checkouts
- Orders: https://docs.lemonsqueezy.com/api/orders
- Webhooks: https://docs.lemonsqueezy.com/help/webhooks (X-Signature, HMAC-SHA256 hex)
"""

import logging
import os
from decimal import Decimal
from typing import Optional

import httpx

from planner_api.billing.base import IntentResult, PaymentProvider, VerificationResult
from planner_api.billing.ledger import PaymentRecord
from planner_api.errors import ConfigurationError, UpstreamError
from planner_api.utils.money import to_minor_units

logger = logging.getLogger(__name__)

JSON_API = "application/vnd.api+json"


class LemonSqueezyProvider(PaymentProvider):
    """Lemon Squeezy checkout client.

    Environment Variables:
    - LEMON_SQUEEZY_API_KEY: API key (Bearer)
    - LEMON_SQUEEZY_STORE_ID: numeric store id
    - LEMON_SQUEEZY_VARIANT_ID: numeric product variant id
    """

    name = "lemonsqueezy"
    supported_currencies = frozenset({"USD", "TWD", "EUR", "GBP"})
    base_url = "https://api.lemonsqueezy.com/v1"

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__(transport)
        self.api_key = os.getenv("LEMON_SQUEEZY_API_KEY")
        store_id = os.getenv("LEMON_SQUEEZY_STORE_ID", "")
        variant_id = os.getenv("LEMON_SQUEEZY_VARIANT_ID", "")

        if not self.api_key:
            raise ConfigurationError(
                "LEMON_SQUEEZY_API_KEY is required. Set it in environment configuration."
            )
        if not store_id.strip().isdigit() or not variant_id.strip().isdigit():
            raise ConfigurationError(
                "LEMON_SQUEEZY_STORE_ID and LEMON_SQUEEZY_VARIANT_ID must be numeric ids."
            )
        self.store_id = store_id.strip()
        self.variant_id = variant_id.strip()

    def _headers(self) -> dict[str, str]:
        return {
            "Accept": JSON_API,
            "Content-Type": JSON_API,
            "Authorization": f"Bearer {self.api_key}",
        }

    async def create_intent(
        self,
        payment_id: str,
        report_id: str,
        amount: Decimal,
        currency: str,
    ) -> IntentResult:
        """Create a hosted checkout.

        The payment id travels as checkout custom data and comes back in
        webhook `meta.custom_data`, which is how webhooks find the record.
        """
        self.check_currency(currency)
        body = {
            "data": {
                "type": "checkouts",
                "attributes": {
                    "custom_price": to_minor_units(amount),
                    "checkout_data": {
                        "custom": {"payment_id": payment_id, "report_id": report_id},
                    },
                },
                "relationships": {
                    "store": {"data": {"type": "stores", "id": self.store_id}},
                    "variant": {"data": {"type": "variants", "id": self.variant_id}},
                },
            }
        }

        try:
            async with self.http_client() as client:
                response = await client.post(
                    f"{self.base_url}/checkouts", headers=self._headers(), json=body
                )
                response.raise_for_status()
                result = response.json()
        except httpx.HTTPError as exc:
            raise self.map_http_error(exc, "checkout") from exc

        data = result.get("data") or {}
        checkout_url = (data.get("attributes") or {}).get("url")
        checkout_id = data.get("id")
        if not checkout_url or not checkout_id:
            raise UpstreamError(
                "Invalid checkout response from Lemon Squeezy", provider=self.name
            )

        logger.info(
            "Lemon Squeezy checkout created",
            extra={
                "event": "lemonsqueezy.checkout.created",
                "checkout_id": checkout_id,
                "payment_id": payment_id,
            },
        )
        return IntentResult(provider_reference=str(checkout_id), redirect_url=checkout_url)

    async def get_order(self, order_id: str) -> dict:
        """Re-query an order (webhooks and clients are never trusted alone)."""
        try:
            async with self.http_client() as client:
                response = await client.get(
                    f"{self.base_url}/orders/{order_id}", headers=self._headers()
                )
                response.raise_for_status()
                return response.json()
        except httpx.HTTPError as exc:
            raise self.map_http_error(exc, "order") from exc

    async def verify(self, record: PaymentRecord, proof: str) -> VerificationResult:
        """Confirm an order id against the provider.

        Requires status "paid", the configured variant, and a total/currency
        equal to the ledger record. Amount mismatches are logged with a fraud
        flag and reported as unconfirmed.
        """
        order = await self.get_order(proof)
        attributes = (order.get("data") or {}).get("attributes") or {}
        status = str(attributes.get("status") or "unknown")

        if status != "paid":
            return VerificationResult(confirmed=False, provider_status=status, provider_reference=proof)

        variant_id = str((attributes.get("first_order_item") or {}).get("variant_id") or "")
        if variant_id != self.variant_id:
            logger.warning(
                "Lemon Squeezy order is for a different product",
                extra={
                    "event": "lemonsqueezy.verify.variant_mismatch",
                    "payment_id": record.id,
                    "order_id": proof,
                    "fraud_flag": True,
                },
            )
            return VerificationResult(confirmed=False, provider_status=status, provider_reference=proof)

        total = attributes.get("total")
        currency = str(attributes.get("currency") or "").upper()
        expected = to_minor_units(record.amount)
        if total != expected or currency != record.currency:
            logger.warning(
                "Lemon Squeezy order amount does not match payment record",
                extra={
                    "event": "lemonsqueezy.verify.amount_mismatch",
                    "payment_id": record.id,
                    "order_id": proof,
                    "expected_minor": expected,
                    "actual_minor": total,
                    "expected_currency": record.currency,
                    "actual_currency": currency,
                    "fraud_flag": True,
                },
            )
            return VerificationResult(
                confirmed=False, provider_status="amount_mismatch", provider_reference=proof
            )

        return VerificationResult(confirmed=True, provider_status=status, provider_reference=proof)
