"""SQLAlchemy ORM models for the SQL payment ledger."""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import NUMERIC, TEXT, TIMESTAMP, Index
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class PaymentRow(Base):
    """Payment record row - authoritative payment status."""

    __tablename__ = "payments"

    payment_id: Mapped[str] = mapped_column(TEXT, primary_key=True)
    report_id: Mapped[str] = mapped_column(TEXT, nullable=False)
    provider: Mapped[str] = mapped_column(TEXT, nullable=False)

    # Money as fixed-point (2dp)
    amount: Mapped[Decimal] = mapped_column(NUMERIC(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(TEXT, nullable=False)

    status: Mapped[str] = mapped_column(TEXT, nullable=False, default="initiated")
    provider_reference: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )

    __table_args__ = (
        Index("idx_payments_report", "report_id"),
        # NULL references (fresh records) never collide
        Index("uq_payments_provider_ref", "provider", "provider_reference", unique=True),
    )
