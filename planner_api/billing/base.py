"""Payment provider interface.

Every provider adapter creates an intent for a ledger record and verifies a
client-presented proof against the provider's own API. Adapters never touch
the ledger; PaymentService owns all status transitions.

Error mapping for outbound calls (map_http_error):
  timeout                  → UpstreamError(timeout=True)  (504)
  network error / 5xx      → UpstreamError                (502)
  401 / 403                → ConfigurationError           (500, credentials rejected)
  other 4xx                → UpstreamError                (502)
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

import httpx

from planner_api.billing.ledger import PaymentRecord
from planner_api.config.env import get_provider_timeout
from planner_api.errors import ConfigurationError, UpstreamError, ValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IntentResult:
    """Provider-side intent for one payment record.

    Checkout providers set redirect_url; crypto providers set
    deposit_address (and may also offer a hosted redirect_url).
    """

    provider_reference: str
    redirect_url: Optional[str] = None
    deposit_address: Optional[str] = None

    @property
    def payment_url_or_address(self) -> str:
        return self.redirect_url or self.deposit_address or ""


@dataclass(frozen=True)
class VerificationResult:
    confirmed: bool
    provider_status: str
    provider_reference: Optional[str] = None


class PaymentProvider(ABC):
    """Adapter for one payment backend."""

    name: str = ""
    supported_currencies: frozenset[str] = frozenset()

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        # transport is injectable so tests can use httpx.MockTransport
        self._transport = transport
        self.timeout = get_provider_timeout()

    def http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    def check_currency(self, currency: str) -> None:
        if currency not in self.supported_currencies:
            raise ValidationError(
                f"Currency {currency} is not supported by {self.name}. "
                f"Supported: {', '.join(sorted(self.supported_currencies))}"
            )

    @abstractmethod
    async def create_intent(
        self,
        payment_id: str,
        report_id: str,
        amount: Decimal,
        currency: str,
    ) -> IntentResult:
        ...

    @abstractmethod
    async def verify(self, record: PaymentRecord, proof: str) -> VerificationResult:
        ...

    def map_http_error(self, exc: httpx.HTTPError, operation: str) -> Exception:
        """Translate an httpx failure into the service error taxonomy."""
        if isinstance(exc, httpx.TimeoutException):
            logger.warning(
                "Provider request timed out",
                extra={"event": f"{self.name}.{operation}.timeout", "provider": self.name},
            )
            return UpstreamError(
                f"{self.name} {operation} timed out after {self.timeout}s",
                provider=self.name,
                timeout=True,
            )

        if isinstance(exc, httpx.HTTPStatusError):
            status = exc.response.status_code
            logger.warning(
                "Provider returned an error status",
                extra={
                    "event": f"{self.name}.{operation}.http_error",
                    "provider": self.name,
                    "status_code": status,
                },
            )
            if status in (401, 403):
                return ConfigurationError(
                    f"{self.name} rejected the configured credentials ({status})"
                )
            return UpstreamError(
                f"{self.name} {operation} failed with HTTP {status}",
                provider=self.name,
            )

        logger.warning(
            "Provider request failed",
            extra={
                "event": f"{self.name}.{operation}.network_error",
                "provider": self.name,
                "error_type": type(exc).__name__,
            },
        )
        return UpstreamError(f"{self.name} {operation} failed: {type(exc).__name__}", provider=self.name)
