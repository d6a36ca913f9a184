"""Process-wide service wiring (FastAPI dependencies).

Each getter builds its object once and caches it; tests swap any of them
through app.dependency_overrides or call reset_dependencies() between cases.
"""

import logging
from functools import lru_cache

from planner_api.audit import AuditSink, get_default_audit_sink
from planner_api.auth.entitlement_token import EntitlementTokenIssuer
from planner_api.billing.ledger import InMemoryPaymentLedger, PaymentLedger
from planner_api.billing.reconciliation import PaymentService
from planner_api.billing.registry import reset_providers
from planner_api.billing.webhook_verifier import SignaturePolicy, WebhookVerifier
from planner_api.config.env import get_ledger_backend
from planner_api.reports.generator import FallbackReportGenerator, ReportGenerator
from planner_api.reports.store import InMemoryReportStore, ReportStore

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_ledger() -> PaymentLedger:
    backend = get_ledger_backend()
    if backend == "sql":
        from planner_api.billing.sql_ledger import SqlPaymentLedger

        logger.info("Ledger backend: sql", extra={"event": "ledger.backend", "backend": backend})
        return SqlPaymentLedger()
    return InMemoryPaymentLedger()


@lru_cache(maxsize=1)
def get_report_store() -> ReportStore:
    return InMemoryReportStore()


@lru_cache(maxsize=1)
def get_report_generator() -> ReportGenerator:
    return FallbackReportGenerator()


@lru_cache(maxsize=1)
def get_audit_sink() -> AuditSink:
    return get_default_audit_sink()


@lru_cache(maxsize=1)
def get_token_issuer() -> EntitlementTokenIssuer:
    return EntitlementTokenIssuer(ledger=get_ledger(), audit_sink=get_audit_sink())


@lru_cache(maxsize=1)
def get_webhook_verifier() -> WebhookVerifier:
    return WebhookVerifier(SignaturePolicy.for_environment())


@lru_cache(maxsize=1)
def get_payment_service() -> PaymentService:
    return PaymentService(
        ledger=get_ledger(),
        reports=get_report_store(),
        issuer=get_token_issuer(),
        audit_sink=get_audit_sink(),
    )


def reset_dependencies() -> None:
    """Drop every cached service (tests)."""
    for getter in (
        get_ledger,
        get_report_store,
        get_report_generator,
        get_audit_sink,
        get_token_issuer,
        get_webhook_verifier,
        get_payment_service,
    ):
        getter.cache_clear()
    reset_providers()
