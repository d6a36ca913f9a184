"""Override grants: beta codes and coupons, plus token introspection.

Beta and coupon tokens go through EntitlementTokenIssuer.issue_override, so
they are always scoped to one existing report and always audited.
"""

import hmac
import logging

from fastapi import APIRouter, Depends

from planner_api.auth.entitlement_auth import require_entitlement
from planner_api.auth.entitlement_token import (
    PROVENANCE_BETA,
    PROVENANCE_COUPON,
    EntitlementClaims,
    EntitlementTokenIssuer,
)
from planner_api.config.env import get_beta_code, get_coupon_codes, get_coupon_discount_amount
from planner_api.context import report_id_var
from planner_api.dependencies import get_report_store, get_token_issuer
from planner_api.errors import InvalidCodeError, ValidationError
from planner_api.reports.store import ReportStore
from planner_api.schemas import (
    BetaVerifyRequest,
    CouponRedeemRequest,
    CouponVerifyRequest,
    CouponVerifyResponse,
    TokenInfo,
    TokenResponse,
    ValidateTokenResponse,
)

router = APIRouter(prefix="/auth", tags=["auth"])
logger = logging.getLogger(__name__)


def _check_coupon(code: str) -> None:
    if not code or not code.strip():
        raise ValidationError("Coupon code is required")
    if code.strip() not in get_coupon_codes():
        logger.info("Coupon rejected", extra={"event": "auth.coupon.rejected"})
        raise InvalidCodeError("Invalid coupon code")


@router.post("/verify-beta", response_model=TokenResponse)
async def verify_beta(
    body: BetaVerifyRequest,
    issuer: EntitlementTokenIssuer = Depends(get_token_issuer),
    store: ReportStore = Depends(get_report_store),
) -> TokenResponse:
    if not body.beta_code:
        raise ValidationError("Beta code is required")
    if not body.report_id:
        raise ValidationError("reportId is required")

    expected = get_beta_code()
    if not expected or not hmac.compare_digest(body.beta_code.encode(), expected.encode()):
        logger.info("Beta code rejected", extra={"event": "auth.beta.rejected"})
        raise InvalidCodeError("Invalid beta code")

    report_id_var.set(body.report_id)
    store.get_or_raise(body.report_id)
    token = issuer.issue_override(body.report_id, PROVENANCE_BETA)
    return TokenResponse(token=token, report_id=body.report_id)


@router.post("/verify-coupon", response_model=CouponVerifyResponse)
async def verify_coupon(body: CouponVerifyRequest) -> CouponVerifyResponse:
    _check_coupon(body.coupon_code or "")
    return CouponVerifyResponse(discount_amount=get_coupon_discount_amount())


@router.post("/redeem-coupon", response_model=TokenResponse)
async def redeem_coupon(
    body: CouponRedeemRequest,
    issuer: EntitlementTokenIssuer = Depends(get_token_issuer),
    store: ReportStore = Depends(get_report_store),
) -> TokenResponse:
    _check_coupon(body.coupon_code or "")
    if not body.report_id:
        raise ValidationError("reportId is required")

    report_id_var.set(body.report_id)
    store.get_or_raise(body.report_id)
    token = issuer.issue_override(body.report_id, PROVENANCE_COUPON)
    return TokenResponse(token=token, report_id=body.report_id)


@router.get("/validate-token", response_model=ValidateTokenResponse)
async def validate_token(
    claims: EntitlementClaims = Depends(require_entitlement),
) -> ValidateTokenResponse:
    return ValidateTokenResponse(
        data=TokenInfo(
            is_paid=claims.is_paid,
            provenance=claims.provenance,
            report_id=claims.report_id,
            payment_id=claims.payment_id,
            expires_at=claims.expires_at,
        )
    )
