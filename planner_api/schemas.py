"""Pydantic schemas for API requests/responses.

Wire names are camelCase (alias_generator); Python attributes are snake_case.
Request fields the service validates itself (amounts, ids) are typed loosely
so bad input reaches the service and fails with its 400 message instead of
a generic schema error.
"""

from datetime import datetime
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from planner_api.reports.models import ReportDocument


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)


# ============================================================================
# Errors
# ============================================================================


class ErrorResponse(CamelModel):
    """Stable failure shape for every non-2xx response."""

    success: bool = False
    message: str
    error_code: str
    request_id: Optional[str] = None
    detail: Optional[str] = Field(default=None, description="Development mode only")


# ============================================================================
# /report
# ============================================================================


class ReportGenerateRequest(CamelModel):
    student_data: dict[str, Any] = Field(..., description="Opaque student profile")


class ReportPayload(CamelModel):
    report_id: str
    report: ReportDocument
    is_paid: bool = False
    created_at: Optional[datetime] = None


class ReportResponse(CamelModel):
    success: bool = True
    data: ReportPayload


# ============================================================================
# /payment
# ============================================================================


class PaymentInitializeRequest(CamelModel):
    amount: Optional[Union[str, int, float]] = Field(default=None, description="Positive decimal, e.g. '10.00'")
    currency: Optional[str] = None
    report_id: Optional[str] = None
    provider: Optional[str] = Field(default=None, description="lemonsqueezy | kryptogo (default from env)")


class PaymentInitializeResponse(CamelModel):
    success: bool = True
    payment_id: str
    payment_url_or_address: str
    provider: str
    status: str


class PaymentVerifyRequest(CamelModel):
    payment_id: Optional[str] = None
    proof: Optional[str] = Field(default=None, description="Order id (Lemon Squeezy) or tx hash (KryptoGO)")


class PaymentVerifyResponse(CamelModel):
    success: bool = True
    token: str
    report_id: str


class PaymentStatusResponse(CamelModel):
    success: bool = True
    payment_id: str
    report_id: str
    provider: str
    status: str
    amount: str
    currency: str
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None


class VerifyStatusResponse(CamelModel):
    success: bool = True
    is_paid: bool
    token_report_id: str
    current_report_id: Optional[str] = None


class WebhookAck(CamelModel):
    received: bool = True
    outcome: str


# ============================================================================
# /auth
# ============================================================================


class BetaVerifyRequest(CamelModel):
    beta_code: Optional[str] = None
    report_id: Optional[str] = None


class CouponVerifyRequest(CamelModel):
    coupon_code: Optional[str] = None


class CouponVerifyResponse(CamelModel):
    success: bool = True
    discount_amount: str


class CouponRedeemRequest(CamelModel):
    coupon_code: Optional[str] = None
    report_id: Optional[str] = None


class TokenResponse(CamelModel):
    success: bool = True
    token: str
    report_id: str


class TokenInfo(CamelModel):
    is_paid: bool
    provenance: str
    report_id: str
    payment_id: Optional[str] = None
    expires_at: datetime


class ValidateTokenResponse(CamelModel):
    success: bool = True
    data: TokenInfo


class HealthResponse(CamelModel):
    status: str = "ok"
    version: str
    environment: str
