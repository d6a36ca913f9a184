"""Payment endpoints: initialize, verify, webhooks, status.

Webhook error taxonomy (retry storm prevention):
  (A) Invalid JSON / non-object payload      → 400
  (B) Signature missing (strict) or wrong    → 401
  (C) Our misconfig (no webhook secret)      → 500 CONFIGURATION_ERROR
  (D) Processing error after verification   → 200 + ERROR log
  Unknown event types                        → 200, no effect
"""

import json as _json
import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query, Request

from planner_api.auth.entitlement_auth import require_entitlement
from planner_api.auth.entitlement_token import EntitlementClaims, is_entitled
from planner_api.billing.ledger import PaymentLedger
from planner_api.billing.reconciliation import EVENT_PARSERS, PaymentService
from planner_api.billing.webhook_verifier import SIGNATURE_HEADERS, WebhookVerifier
from planner_api.context import payment_id_var
from planner_api.dependencies import get_ledger, get_payment_service, get_webhook_verifier
from planner_api.errors import NotFoundError, ValidationError, WebhookSignatureError
from planner_api.schemas import (
    PaymentInitializeRequest,
    PaymentInitializeResponse,
    PaymentStatusResponse,
    PaymentVerifyRequest,
    PaymentVerifyResponse,
    VerifyStatusResponse,
    WebhookAck,
)
from planner_api.utils.money import format_amount
from planner_api.utils.sanitize import payload_hash_bytes, sanitize_str

router = APIRouter(prefix="/payment", tags=["payment"])
logger = logging.getLogger(__name__)


@router.post("/initialize", response_model=PaymentInitializeResponse)
async def initialize_payment(
    body: PaymentInitializeRequest,
    service: PaymentService = Depends(get_payment_service),
) -> PaymentInitializeResponse:
    result = await service.initialize(
        amount=body.amount,
        currency=body.currency,
        report_id=body.report_id,
        provider=body.provider,
    )
    return PaymentInitializeResponse(
        payment_id=result.record.id,
        payment_url_or_address=result.intent.payment_url_or_address,
        provider=result.record.provider,
        status=result.record.status.value,
    )


@router.post("/verify", response_model=PaymentVerifyResponse)
async def verify_payment(
    body: PaymentVerifyRequest,
    service: PaymentService = Depends(get_payment_service),
) -> PaymentVerifyResponse:
    result = await service.verify(payment_id=body.payment_id, proof=body.proof)
    return PaymentVerifyResponse(token=result.token, report_id=result.record.report_id)


async def _handle_webhook(
    request: Request,
    provider: str,
    service: PaymentService,
    verifier: WebhookVerifier,
) -> WebhookAck:
    if provider not in EVENT_PARSERS:
        raise NotFoundError(f"Unknown webhook provider {provider}", message="Unknown webhook provider")

    # ── Step 0: Raw body ingestion ───────────────────────────────────────────
    raw_body: bytes = await request.body()
    payload_hash = payload_hash_bytes(raw_body)

    # ── Step 1: JSON parsing (A → 400) ──────────────────────────────────────
    try:
        payload: Any = _json.loads(raw_body)
    except (_json.JSONDecodeError, UnicodeDecodeError):
        logger.warning(
            "Webhook body is not valid JSON",
            extra={"event": "webhook.invalid_json", "provider": provider, "payload_hash": payload_hash},
        )
        raise ValidationError("Invalid JSON payload")
    if not isinstance(payload, dict):
        raise ValidationError("Webhook payload must be a JSON object")

    logger.info(
        "Webhook received",
        extra={
            "event": "webhook.received",
            "provider": provider,
            "payload_hash": payload_hash,
            "payload_size": len(raw_body),
        },
    )

    # ── Step 2: Signature (B → 401, C → 500 via ConfigurationError) ─────────
    signature = request.headers.get(SIGNATURE_HEADERS[provider])
    if not verifier.verify_provider(provider, raw_body, signature):
        logger.warning(
            "Webhook signature rejected",
            extra={
                "event": "webhook.signature_invalid",
                "provider": provider,
                "payload_hash": payload_hash,
                "signature_present": bool(signature),
            },
        )
        raise WebhookSignatureError()

    # ── Step 3: Apply (D → 200 + ERROR log) ─────────────────────────────────
    try:
        outcome = service.apply_webhook_event(provider, payload)
    except Exception as exc:
        logger.error(
            "Webhook processing failed after verification",
            extra={
                "event": "webhook.processing_failed",
                "provider": provider,
                "payload_hash": payload_hash,
                "error_type": type(exc).__name__,
                "error": sanitize_str(str(exc)),
            },
            exc_info=True,
        )
        return WebhookAck(outcome="error")

    logger.info(
        "Webhook processed",
        extra={
            "event": "webhook.processed",
            "provider": provider,
            "outcome": outcome.outcome,
            "payment_id": outcome.payment_id,
            "status": outcome.status,
        },
    )
    return WebhookAck(outcome=outcome.outcome)


@router.post("/webhook", response_model=WebhookAck)
async def kryptogo_webhook(
    request: Request,
    service: PaymentService = Depends(get_payment_service),
    verifier: WebhookVerifier = Depends(get_webhook_verifier),
) -> WebhookAck:
    return await _handle_webhook(request, "kryptogo", service, verifier)


@router.post("/webhook/{provider}", response_model=WebhookAck)
async def provider_webhook(
    provider: str,
    request: Request,
    service: PaymentService = Depends(get_payment_service),
    verifier: WebhookVerifier = Depends(get_webhook_verifier),
) -> WebhookAck:
    return await _handle_webhook(request, provider.strip().lower(), service, verifier)


@router.get("/verify-status", response_model=VerifyStatusResponse)
async def verify_status(
    report_id: Optional[str] = Query(default=None, alias="reportId"),
    claims: EntitlementClaims = Depends(require_entitlement),
) -> VerifyStatusResponse:
    # no reportId means nothing to be entitled to
    is_paid = bool(report_id) and is_entitled(claims, report_id)
    return VerifyStatusResponse(
        is_paid=is_paid,
        token_report_id=claims.report_id,
        current_report_id=report_id,
    )


@router.get("/{payment_id}", response_model=PaymentStatusResponse)
async def get_payment_status(
    payment_id: str,
    ledger: PaymentLedger = Depends(get_ledger),
) -> PaymentStatusResponse:
    payment_id_var.set(payment_id)
    record = ledger.find_by_id(payment_id)
    return PaymentStatusResponse(
        payment_id=record.id,
        report_id=record.report_id,
        provider=record.provider,
        status=record.status.value,
        amount=format_amount(record.amount),
        currency=record.currency,
        created_at=record.created_at,
        updated_at=record.updated_at,
        completed_at=record.completed_at,
    )
