"""Entitlement tokens: signed, expiring proof of access to one report.

Stateless JWT (HS256, JWT_SECRET). Claims:

    sub        report id (same as reportId)
    reportId   the only report this token can unlock
    isPaid     always true for issued tokens
    provenance lemonsqueezy | kryptogo | beta_code | coupon
    paymentId  ledger payment id (None for override grants)
    iat, exp   issue / expiry timestamps

Two issuance paths:
  issue_for_payment(record)      : requires a completed ledger record
  issue_override(report_id, ...) : beta code / coupon; audited

No refresh, no revocation: a token is valid until exp.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

import jwt

from planner_api.audit import OVERRIDE_ISSUED, AuditSink, InMemoryAuditSink, record_audit_event
from planner_api.billing.ledger import PaymentLedger, PaymentRecord, PaymentStatus
from planner_api.config.env import get_beta_token_ttl_hours, get_entitlement_ttl_days, get_jwt_secret
from planner_api.errors import AuthorizationError, ValidationError

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"

PROVENANCE_BETA = "beta_code"
PROVENANCE_COUPON = "coupon"
OVERRIDE_PROVENANCES = frozenset({PROVENANCE_BETA, PROVENANCE_COUPON})


@dataclass(frozen=True)
class EntitlementClaims:
    report_id: str
    is_paid: bool
    provenance: str
    payment_id: Optional[str]
    issued_at: datetime
    expires_at: datetime

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "EntitlementClaims":
        report_id = payload.get("reportId")
        is_paid = payload.get("isPaid")
        if not isinstance(report_id, str) or not report_id or not isinstance(is_paid, bool):
            raise AuthorizationError("Token is missing entitlement claims")
        return cls(
            report_id=report_id,
            is_paid=is_paid,
            provenance=str(payload.get("provenance") or ""),
            payment_id=payload.get("paymentId"),
            issued_at=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
            expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
        )


def is_entitled(claims: Optional[EntitlementClaims], report_id: str) -> bool:
    """Scope check: the token names this exact report and is a paid grant."""
    return claims is not None and claims.is_paid and claims.report_id == report_id


def decode_token(token: str, secret: Optional[str] = None) -> EntitlementClaims:
    """Verify signature and expiry and return the claims.

    Raises:
        AuthorizationError: expired, tampered, malformed or wrongly-signed token
        ConfigurationError: JWT_SECRET missing
    """
    secret = secret or get_jwt_secret()
    try:
        payload = jwt.decode(
            token,
            secret,
            algorithms=[ALGORITHM],
            options={"require": ["exp", "iat", "sub"]},
        )
    except jwt.ExpiredSignatureError:
        raise AuthorizationError("Entitlement token expired", message="Token has expired.")
    except jwt.InvalidTokenError as exc:
        raise AuthorizationError(f"Invalid entitlement token: {type(exc).__name__}")
    return EntitlementClaims.from_payload(payload)


class EntitlementTokenIssuer:
    """Mints entitlement tokens.

    The ledger, when given, is re-read on every payment issuance so a stale
    in-hand record can never mint a token.
    """

    def __init__(
        self,
        ledger: Optional[PaymentLedger] = None,
        audit_sink: Optional[AuditSink] = None,
        secret: Optional[str] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.ledger = ledger
        self.audit_sink = audit_sink or InMemoryAuditSink()
        self._secret = secret
        self._clock = clock

    @property
    def secret(self) -> str:
        return self._secret or get_jwt_secret()

    def _encode(
        self,
        *,
        report_id: str,
        provenance: str,
        payment_id: Optional[str],
        ttl: timedelta,
    ) -> str:
        now = self._clock()
        payload = {
            "sub": report_id,
            "reportId": report_id,
            "isPaid": True,
            "provenance": provenance,
            "paymentId": payment_id,
            "iat": now,
            "exp": now + ttl,
        }
        return jwt.encode(payload, self.secret, algorithm=ALGORITHM)

    def issue_for_payment(self, record: PaymentRecord) -> str:
        """Token for a completed payment.

        Raises:
            AuthorizationError: the payment is not completed
        """
        current = self.ledger.find_by_id(record.id) if self.ledger is not None else record
        if current.status != PaymentStatus.COMPLETED:
            logger.warning(
                "Refusing to issue token for unconfirmed payment",
                extra={
                    "event": "entitlement.issue.refused",
                    "payment_id": current.id,
                    "status": current.status.value,
                },
            )
            raise AuthorizationError(
                f"Payment {current.id} is {current.status.value}, not completed",
                message="Payment has not been completed.",
            )

        token = self._encode(
            report_id=current.report_id,
            provenance=current.provider,
            payment_id=current.id,
            ttl=timedelta(days=get_entitlement_ttl_days()),
        )
        logger.info(
            "Entitlement token issued",
            extra={
                "event": "entitlement.token.issued",
                "payment_id": current.id,
                "report_id": current.report_id,
                "provenance": current.provider,
            },
        )
        return token

    def issue_override(
        self,
        report_id: str,
        provenance: str,
        ttl: Optional[timedelta] = None,
    ) -> str:
        """Token granted without payment (beta code, coupon).

        Always scoped to one report and always audited.
        """
        if provenance not in OVERRIDE_PROVENANCES:
            raise ValidationError(f"Unsupported override provenance: {provenance}")
        if not report_id:
            raise ValidationError("reportId is required")

        if ttl is None:
            if provenance == PROVENANCE_BETA:
                ttl = timedelta(hours=get_beta_token_ttl_hours())
            else:
                ttl = timedelta(days=get_entitlement_ttl_days())

        token = self._encode(report_id=report_id, provenance=provenance, payment_id=None, ttl=ttl)
        record_audit_event(
            self.audit_sink,
            OVERRIDE_ISSUED,
            report_id=report_id,
            provenance=provenance,
            ttl_seconds=int(ttl.total_seconds()),
        )
        return token

    def decode(self, token: str) -> EntitlementClaims:
        return decode_token(token, self.secret)
