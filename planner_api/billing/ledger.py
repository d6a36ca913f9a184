"""Payment ledger: single source of truth for payment status transitions.

Status machine:

    initiated ──► pending ──► completed | failed | expired
        └──────────────────►  completed | failed | expired

Terminal statuses are sticky. transition() is atomic with respect to the
"already terminal" check: of two racing transitions to `completed` (webhook
push vs. client verify pull), exactly one reports applied=True and the other
is a no-op. Callers gate side effects (audit grants) on `applied`.

Outbound provider calls must finish before transition() is called; the
ledger never holds its lock across network I/O.
"""

import logging
import secrets
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict

from planner_api.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)


class PaymentStatus(str, Enum):
    INITIATED = "initiated"
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({PaymentStatus.COMPLETED, PaymentStatus.FAILED, PaymentStatus.EXPIRED})

# new status → statuses it may be entered from
ALLOWED_PREDECESSORS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.INITIATED: frozenset(),
    PaymentStatus.PENDING: frozenset({PaymentStatus.INITIATED}),
    PaymentStatus.COMPLETED: frozenset({PaymentStatus.INITIATED, PaymentStatus.PENDING}),
    PaymentStatus.FAILED: frozenset({PaymentStatus.INITIATED, PaymentStatus.PENDING}),
    PaymentStatus.EXPIRED: frozenset({PaymentStatus.INITIATED, PaymentStatus.PENDING}),
}


def new_payment_id() -> str:
    return f"payment_{secrets.token_hex(12)}"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PaymentRecord(BaseModel):
    """Immutable snapshot of a payment record."""

    model_config = ConfigDict(frozen=True)

    id: str
    report_id: str
    provider: str
    amount: Decimal
    currency: str
    status: PaymentStatus = PaymentStatus.INITIATED
    provider_reference: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of a transition attempt.

    applied is True only when this call moved the status; the record is the
    state after the call either way.
    """

    record: PaymentRecord
    applied: bool


class ProviderReferenceInUseError(ValidationError):
    """The provider reference is already bound to another payment of that provider."""


def plan_transition(
    current: PaymentStatus,
    new_status: PaymentStatus,
) -> Optional[bool]:
    """Decide what a transition request does.

    Returns:
        True  : status moves to new_status
        False : same non-terminal status; only mutable fields are updated
        None  : rejected (terminal, or a backward move); record untouched
    """
    if current == new_status and not current.is_terminal:
        return False
    if current in ALLOWED_PREDECESSORS[new_status]:
        return True
    return None


class PaymentLedger(ABC):
    """Storage interface for payment records."""

    @abstractmethod
    def create(
        self,
        report_id: str,
        provider: str,
        amount: Decimal,
        currency: str,
    ) -> PaymentRecord:
        ...

    @abstractmethod
    def get(self, payment_id: str) -> Optional[PaymentRecord]:
        ...

    @abstractmethod
    def find_by_provider_reference(self, provider: str, reference: str) -> Optional[PaymentRecord]:
        ...

    @abstractmethod
    def list_for_report(self, report_id: str) -> list[PaymentRecord]:
        ...

    @abstractmethod
    def transition(
        self,
        payment_id: str,
        new_status: PaymentStatus,
        *,
        provider_reference: Optional[str] = None,
    ) -> TransitionResult:
        ...

    def find_by_id(self, payment_id: str) -> PaymentRecord:
        """Raises NotFoundError when no record matches."""
        record = self.get(payment_id)
        if record is None:
            raise NotFoundError(
                f"Payment record {payment_id} not found",
                message="Payment record not found",
            )
        return record


def _log_transition(record: PaymentRecord, previous: PaymentStatus, outcome: Optional[bool]) -> None:
    if outcome is None:
        logger.info(
            "Payment transition ignored",
            extra={
                "event": "ledger.transition.ignored",
                "payment_id": record.id,
                "current_status": previous.value,
            },
        )
    elif outcome:
        logger.info(
            "Payment status changed",
            extra={
                "event": "ledger.transition.applied",
                "payment_id": record.id,
                "from_status": previous.value,
                "to_status": record.status.value,
            },
        )


class InMemoryPaymentLedger(PaymentLedger):
    """Process-local ledger guarded by a single lock."""

    def __init__(self) -> None:
        self._records: dict[str, PaymentRecord] = {}
        self._lock = threading.Lock()

    def create(self, report_id: str, provider: str, amount: Decimal, currency: str) -> PaymentRecord:
        now = utcnow()
        record = PaymentRecord(
            id=new_payment_id(),
            report_id=report_id,
            provider=provider,
            amount=amount,
            currency=currency,
            status=PaymentStatus.INITIATED,
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            self._records[record.id] = record
        return record

    def get(self, payment_id: str) -> Optional[PaymentRecord]:
        with self._lock:
            return self._records.get(payment_id)

    def find_by_provider_reference(self, provider: str, reference: str) -> Optional[PaymentRecord]:
        with self._lock:
            for record in self._records.values():
                if record.provider == provider and record.provider_reference == reference:
                    return record
        return None

    def list_for_report(self, report_id: str) -> list[PaymentRecord]:
        with self._lock:
            records = [r for r in self._records.values() if r.report_id == report_id]
        return sorted(records, key=lambda r: r.created_at)

    def transition(
        self,
        payment_id: str,
        new_status: PaymentStatus,
        *,
        provider_reference: Optional[str] = None,
    ) -> TransitionResult:
        new_status = PaymentStatus(new_status)
        with self._lock:
            current = self._records.get(payment_id)
            if current is None:
                raise NotFoundError(
                    f"Payment record {payment_id} not found",
                    message="Payment record not found",
                )

            outcome = plan_transition(current.status, new_status)
            if outcome is None:
                _log_transition(current, current.status, outcome)
                return TransitionResult(record=current, applied=False)

            if provider_reference and any(
                other.id != payment_id
                and other.provider == current.provider
                and other.provider_reference == provider_reference
                for other in self._records.values()
            ):
                raise ProviderReferenceInUseError(
                    f"{current.provider} reference is already bound to another payment"
                )

            now = utcnow()
            update: dict = {"updated_at": now}
            if provider_reference:
                update["provider_reference"] = provider_reference
            if outcome:
                update["status"] = new_status
                if new_status == PaymentStatus.COMPLETED:
                    update["completed_at"] = now

            updated = current.model_copy(update=update)
            self._records[payment_id] = updated

        _log_transition(updated, current.status, outcome)
        return TransitionResult(record=updated, applied=outcome)
