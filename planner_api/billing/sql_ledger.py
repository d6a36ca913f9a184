"""SQL-backed payment ledger (compare-and-swap transitions).

transition() is a single conditional UPDATE:

    UPDATE payments
       SET status=:new, updated_at=:now, ...
     WHERE payment_id=:id AND status IN (:allowed_predecessors)

rowcount == 1 means this call won; rowcount == 0 means the record was
already terminal (or the move was backwards) and nothing changed. Two
concurrent `completed` transitions therefore yield exactly one applied=True,
across processes as well as threads.

A unique index on (provider, provider_reference) makes binding one provider
proof to two payments fail inside the database; that surfaces as
ProviderReferenceInUseError.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import Engine, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from planner_api.billing.ledger import (
    ALLOWED_PREDECESSORS,
    PaymentLedger,
    PaymentRecord,
    PaymentStatus,
    ProviderReferenceInUseError,
    TransitionResult,
    new_payment_id,
    utcnow,
)
from planner_api.db.models import Base, PaymentRow
from planner_api.db.session import build_engine, build_sessionmaker
from planner_api.errors import NotFoundError

logger = logging.getLogger(__name__)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite drops tzinfo; stored values are always UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_record(row: PaymentRow) -> PaymentRecord:
    return PaymentRecord(
        id=row.payment_id,
        report_id=row.report_id,
        provider=row.provider,
        amount=Decimal(row.amount).quantize(Decimal("0.01")),
        currency=row.currency,
        status=PaymentStatus(row.status),
        provider_reference=row.provider_reference,
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
        completed_at=_aware(row.completed_at),
    )


class SqlPaymentLedger(PaymentLedger):
    """Payment ledger persisted through SQLAlchemy."""

    def __init__(self, engine: Optional[Engine] = None, create_tables: bool = True):
        self.engine = engine or build_engine()
        self._sessions: sessionmaker[Session] = build_sessionmaker(self.engine)
        if create_tables:
            Base.metadata.create_all(self.engine)

    def create(self, report_id: str, provider: str, amount: Decimal, currency: str) -> PaymentRecord:
        now = utcnow()
        row = PaymentRow(
            payment_id=new_payment_id(),
            report_id=report_id,
            provider=provider,
            amount=amount,
            currency=currency,
            status=PaymentStatus.INITIATED.value,
            created_at=now,
            updated_at=now,
        )
        with self._sessions() as session:
            session.add(row)
            session.commit()
            return _to_record(row)

    def get(self, payment_id: str) -> Optional[PaymentRecord]:
        with self._sessions() as session:
            row = session.get(PaymentRow, payment_id)
            return _to_record(row) if row is not None else None

    def find_by_provider_reference(self, provider: str, reference: str) -> Optional[PaymentRecord]:
        stmt = select(PaymentRow).where(
            PaymentRow.provider == provider,
            PaymentRow.provider_reference == reference,
        )
        with self._sessions() as session:
            row = session.execute(stmt).scalars().first()
            return _to_record(row) if row is not None else None

    def list_for_report(self, report_id: str) -> list[PaymentRecord]:
        stmt = (
            select(PaymentRow)
            .where(PaymentRow.report_id == report_id)
            .order_by(PaymentRow.created_at)
        )
        with self._sessions() as session:
            return [_to_record(row) for row in session.execute(stmt).scalars()]

    def transition(
        self,
        payment_id: str,
        new_status: PaymentStatus,
        *,
        provider_reference: Optional[str] = None,
    ) -> TransitionResult:
        new_status = PaymentStatus(new_status)
        now = utcnow()
        values: dict = {"status": new_status.value, "updated_at": now}
        if provider_reference:
            values["provider_reference"] = provider_reference
        if new_status == PaymentStatus.COMPLETED:
            values["completed_at"] = now

        predecessors = [s.value for s in ALLOWED_PREDECESSORS[new_status]]

        with self._sessions() as session:
            applied = False
            try:
                if predecessors:
                    result = session.execute(
                        update(PaymentRow)
                        .where(
                            PaymentRow.payment_id == payment_id,
                            PaymentRow.status.in_(predecessors),
                        )
                        .values(**values)
                    )
                    applied = result.rowcount == 1

                if not applied and provider_reference and not new_status.is_terminal:
                    # same non-terminal status: refresh the provider reference only
                    session.execute(
                        update(PaymentRow)
                        .where(
                            PaymentRow.payment_id == payment_id,
                            PaymentRow.status == new_status.value,
                        )
                        .values(provider_reference=provider_reference, updated_at=now)
                    )
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                logger.warning(
                    "Provider reference already bound to another payment",
                    extra={
                        "event": "ledger.transition.reference_conflict",
                        "payment_id": payment_id,
                        "to_status": new_status.value,
                    },
                )
                raise ProviderReferenceInUseError(
                    "Provider reference is already bound to another payment"
                ) from exc

            row = session.get(PaymentRow, payment_id, populate_existing=True)
            if row is None:
                raise NotFoundError(
                    f"Payment record {payment_id} not found",
                    message="Payment record not found",
                )
            record = _to_record(row)

        logger.info(
            "Payment status changed" if applied else "Payment transition ignored",
            extra={
                "event": "ledger.transition.applied" if applied else "ledger.transition.ignored",
                "payment_id": payment_id,
                "to_status": new_status.value,
                "current_status": record.status.value,
            },
        )
        return TransitionResult(record=record, applied=applied)
