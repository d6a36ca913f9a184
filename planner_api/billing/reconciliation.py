"""Payment reconciliation: the push and pull paths into the ledger.

initialize (client → us → provider):
  validate input → report must exist → ledger.create (initiated)
  → provider.create_intent → transition pending (+providerReference)
  intent failure → transition failed, error re-raised

verify (client "I paid" → us → provider re-query):
  ledger.find_by_id → provider.verify (no lock held) → transition completed
  → re-read → token only when the fresh record is completed

apply_webhook_event (provider → us, signature already verified):
  allow-listed event → target status → transition
  unknown event types are acknowledged without effect

Exactly one entitlement.granted audit record per payment: whichever path
wins the ledger transition (applied=True) writes it.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from planner_api.audit import (
    AMOUNT_MISMATCH,
    ENTITLEMENT_GRANTED,
    AuditSink,
    record_audit_event,
)
from planner_api.auth.entitlement_token import EntitlementTokenIssuer
from planner_api.billing.base import IntentResult, PaymentProvider
from planner_api.billing.ledger import PaymentLedger, PaymentRecord, PaymentStatus, ProviderReferenceInUseError
from planner_api.billing.registry import get_provider, resolve_provider_name
from planner_api.context import payment_id_var, report_id_var
from planner_api.errors import PlannerError, ValidationError
from planner_api.reports.store import ReportStore
from planner_api.utils.money import format_amount, normalize_currency, parse_amount, to_minor_units

logger = logging.getLogger(__name__)

VERIFICATION_FAILED_MESSAGE = "Payment verification failed"

# Lemon Squeezy: meta.event_name allow-list, then order status → ledger status
LEMONSQUEEZY_EVENTS = frozenset({"order_created"})
LEMONSQUEEZY_ORDER_STATUSES = {
    "paid": PaymentStatus.COMPLETED,
    "failed": PaymentStatus.FAILED,
    "fraudulent": PaymentStatus.FAILED,
}

# KryptoGO: intent status → ledger status
KRYPTOGO_STATUSES = {
    "success": PaymentStatus.COMPLETED,
    "failed": PaymentStatus.FAILED,
    "expired": PaymentStatus.EXPIRED,
}


@dataclass(frozen=True)
class WebhookEvent:
    """Provider-neutral view of one notification."""

    provider: str
    event_type: str
    target_status: Optional[PaymentStatus]
    payment_id: Optional[str] = None
    provider_reference: Optional[str] = None
    amount_minor: Optional[int] = None
    currency: Optional[str] = None


@dataclass(frozen=True)
class WebhookOutcome:
    outcome: str  # applied | duplicate | ignored | unknown_payment | amount_mismatch
    payment_id: Optional[str] = None
    status: Optional[str] = None


@dataclass(frozen=True)
class InitializeResult:
    record: PaymentRecord
    intent: IntentResult


@dataclass(frozen=True)
class VerifyResult:
    record: PaymentRecord
    token: str


def parse_lemonsqueezy_event(payload: dict[str, Any]) -> WebhookEvent:
    meta = payload.get("meta") or {}
    data = payload.get("data") or {}
    attributes = data.get("attributes") or {}
    custom = meta.get("custom_data") or {}
    event_type = str(meta.get("event_name") or "")

    target = None
    if event_type in LEMONSQUEEZY_EVENTS:
        target = LEMONSQUEEZY_ORDER_STATUSES.get(str(attributes.get("status") or ""))

    total = attributes.get("total")
    return WebhookEvent(
        provider="lemonsqueezy",
        event_type=event_type,
        target_status=target,
        payment_id=custom.get("payment_id"),
        provider_reference=str(data["id"]) if data.get("id") is not None else None,
        amount_minor=total if isinstance(total, int) else None,
        currency=str(attributes.get("currency") or "").upper() or None,
    )


def parse_kryptogo_event(payload: dict[str, Any]) -> WebhookEvent:
    status = str(payload.get("status") or "")
    return WebhookEvent(
        provider="kryptogo",
        event_type=status,
        target_status=KRYPTOGO_STATUSES.get(status),
        provider_reference=payload.get("payment_intent_id"),
    )


EVENT_PARSERS: dict[str, Callable[[dict[str, Any]], WebhookEvent]] = {
    "lemonsqueezy": parse_lemonsqueezy_event,
    "kryptogo": parse_kryptogo_event,
}


class PaymentService:
    def __init__(
        self,
        ledger: PaymentLedger,
        reports: ReportStore,
        issuer: EntitlementTokenIssuer,
        audit_sink: AuditSink,
        provider_resolver: Callable[[Optional[str]], PaymentProvider] = get_provider,
    ):
        self.ledger = ledger
        self.reports = reports
        self.issuer = issuer
        self.audit_sink = audit_sink
        self.provider_resolver = provider_resolver

    # ------------------------------------------------------------------
    # initialize
    # ------------------------------------------------------------------

    async def initialize(
        self,
        *,
        amount: Any,
        currency: Optional[str],
        report_id: Optional[str],
        provider: Optional[str] = None,
    ) -> InitializeResult:
        parsed_amount = parse_amount(amount)
        parsed_currency = normalize_currency(currency)
        if not report_id:
            raise ValidationError("reportId is required")
        provider_name = resolve_provider_name(provider)

        self.reports.get_or_raise(report_id)
        report_id_var.set(report_id)

        adapter = self.provider_resolver(provider_name)
        adapter.check_currency(parsed_currency)

        record = self.ledger.create(report_id, provider_name, parsed_amount, parsed_currency)
        payment_id_var.set(record.id)

        try:
            intent = await adapter.create_intent(record.id, report_id, parsed_amount, parsed_currency)
        except PlannerError:
            self.ledger.transition(record.id, PaymentStatus.FAILED)
            logger.warning(
                "Payment intent creation failed",
                extra={"event": "payment.intent.failed", "payment_id": record.id, "provider": provider_name},
            )
            raise

        result = self.ledger.transition(
            record.id,
            PaymentStatus.PENDING,
            provider_reference=intent.provider_reference,
        )
        logger.info(
            "Payment initialized",
            extra={
                "event": "payment.intent.created",
                "payment_id": record.id,
                "report_id": report_id,
                "provider": provider_name,
                "amount": format_amount(parsed_amount),
                "currency": parsed_currency,
            },
        )
        return InitializeResult(record=result.record, intent=intent)

    # ------------------------------------------------------------------
    # verify
    # ------------------------------------------------------------------

    async def verify(self, *, payment_id: Optional[str], proof: Optional[str]) -> VerifyResult:
        if not payment_id:
            raise ValidationError("paymentId is required")
        if not proof or not str(proof).strip():
            raise ValidationError("proof is required")
        proof = str(proof).strip()

        record = self.ledger.find_by_id(payment_id)
        payment_id_var.set(record.id)
        report_id_var.set(record.report_id)

        if record.status in (PaymentStatus.FAILED, PaymentStatus.EXPIRED):
            raise ValidationError(
                f"Payment {record.id} is {record.status.value}",
                message=VERIFICATION_FAILED_MESSAGE,
            )

        adapter = self.provider_resolver(record.provider)
        verification = await adapter.verify(record, proof)

        if verification.confirmed and verification.provider_reference:
            holder = self.ledger.find_by_provider_reference(record.provider, verification.provider_reference)
            if holder is not None and holder.id != record.id:
                logger.warning(
                    "Proof already bound to another payment",
                    extra={
                        "event": "payment.verify.proof_reused",
                        "payment_id": record.id,
                        "other_payment_id": holder.id,
                        "fraud_flag": True,
                    },
                )
                raise ValidationError("Proof belongs to another payment", message=VERIFICATION_FAILED_MESSAGE)

        if not verification.confirmed:
            if verification.provider_status == "amount_mismatch":
                record_audit_event(
                    self.audit_sink,
                    AMOUNT_MISMATCH,
                    payment_id=record.id,
                    report_id=record.report_id,
                    provider=record.provider,
                    source="verify",
                )
            logger.info(
                "Payment not confirmed by provider",
                extra={
                    "event": "payment.verify.unconfirmed",
                    "payment_id": record.id,
                    "provider_status": verification.provider_status,
                },
            )
            raise ValidationError(
                f"Provider status {verification.provider_status}",
                message=VERIFICATION_FAILED_MESSAGE,
            )

        try:
            result = self.ledger.transition(
                record.id,
                PaymentStatus.COMPLETED,
                provider_reference=verification.provider_reference,
            )
        except ProviderReferenceInUseError:
            # lost a race with another payment claiming the same proof
            logger.warning(
                "Proof already bound to another payment",
                extra={"event": "payment.verify.proof_reused", "payment_id": record.id, "fraud_flag": True},
            )
            raise ValidationError("Proof belongs to another payment", message=VERIFICATION_FAILED_MESSAGE)
        if result.applied:
            self._record_grant(result.record, source="verify")

        fresh = self.ledger.find_by_id(record.id)
        if fresh.status != PaymentStatus.COMPLETED:
            raise ValidationError(
                f"Payment {fresh.id} settled as {fresh.status.value}",
                message=VERIFICATION_FAILED_MESSAGE,
            )
        return VerifyResult(record=fresh, token=self.issuer.issue_for_payment(fresh))

    # ------------------------------------------------------------------
    # webhooks
    # ------------------------------------------------------------------

    def parse_webhook_event(self, provider: str, payload: dict[str, Any]) -> WebhookEvent:
        parser = EVENT_PARSERS.get(provider)
        if parser is None:
            raise ValidationError(f"Unknown payment provider '{provider}'")
        return parser(payload)

    def _find_webhook_record(self, event: WebhookEvent) -> Optional[PaymentRecord]:
        if event.payment_id:
            record = self.ledger.get(event.payment_id)
            if record is not None:
                return record
        if event.provider_reference:
            return self.ledger.find_by_provider_reference(event.provider, event.provider_reference)
        return None

    def apply_webhook_event(self, provider: str, payload: dict[str, Any]) -> WebhookOutcome:
        """Apply a signature-verified notification to the ledger. Never mints tokens."""
        event = self.parse_webhook_event(provider, payload)

        if event.target_status is None:
            logger.info(
                "Ignoring webhook event",
                extra={"event": "webhook.event.ignored", "provider": provider, "event_type": event.event_type},
            )
            return WebhookOutcome(outcome="ignored")

        record = self._find_webhook_record(event)
        if record is None or record.provider != provider:
            logger.warning(
                "Webhook references an unknown payment",
                extra={
                    "event": "webhook.payment.unknown",
                    "provider": provider,
                    "provider_reference": event.provider_reference,
                },
            )
            return WebhookOutcome(outcome="unknown_payment")

        payment_id_var.set(record.id)
        report_id_var.set(record.report_id)

        if event.target_status == PaymentStatus.COMPLETED and event.amount_minor is not None:
            if event.amount_minor != to_minor_units(record.amount) or (
                event.currency and event.currency != record.currency
            ):
                record_audit_event(
                    self.audit_sink,
                    AMOUNT_MISMATCH,
                    payment_id=record.id,
                    report_id=record.report_id,
                    provider=provider,
                    source="webhook",
                    expected_minor=to_minor_units(record.amount),
                    actual_minor=event.amount_minor,
                )
                return WebhookOutcome(outcome="amount_mismatch", payment_id=record.id, status=record.status.value)

        result = self.ledger.transition(
            record.id,
            event.target_status,
            provider_reference=event.provider_reference,
        )
        if result.applied and result.record.status == PaymentStatus.COMPLETED:
            self._record_grant(result.record, source="webhook")

        return WebhookOutcome(
            outcome="applied" if result.applied else "duplicate",
            payment_id=record.id,
            status=result.record.status.value,
        )

    def _record_grant(self, record: PaymentRecord, *, source: str) -> None:
        record_audit_event(
            self.audit_sink,
            ENTITLEMENT_GRANTED,
            payment_id=record.id,
            report_id=record.report_id,
            provider=record.provider,
            amount=format_amount(record.amount),
            currency=record.currency,
            source=source,
        )
