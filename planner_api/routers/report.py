"""Report generation and retrieval.

POST /report/generate     : create a report; response is always the preview
GET  /report/{id}         : preview or full view depending on the bearer token
GET  /report/{id}/pdf     : full report as PDF (paid, scoped token required)
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request, Response
from starlette.concurrency import run_in_threadpool

from planner_api.auth.entitlement_auth import optional_entitlement, require_entitlement
from planner_api.auth.entitlement_token import EntitlementClaims, is_entitled
from planner_api.config.env import get_rate_limit_allowlist
from planner_api.context import report_id_var
from planner_api.dependencies import get_report_generator, get_report_store
from planner_api.errors import AuthorizationError, RateLimitedError
from planner_api.rate_limiter import NoOpRateLimiter, RateLimiter
from planner_api.reports.generator import ReportGenerator
from planner_api.reports.partition import partition
from planner_api.reports.pdf import render_report_pdf
from planner_api.reports.store import ReportStore
from planner_api.schemas import ReportGenerateRequest, ReportPayload, ReportResponse

router = APIRouter(prefix="/report", tags=["report"])
logger = logging.getLogger(__name__)


def enforce_report_rate_limit(request: Request, response: Response) -> None:
    """Per-IP quota on report generation; allowlisted addresses are exempt.

    Rejections raise RateLimitedError (429 + Retry-After); accepted requests
    get IETF RateLimit headers.
    """
    client_ip = request.client.host if request.client else "anonymous"
    if client_ip in get_rate_limit_allowlist():
        return

    limiter: Optional[RateLimiter] = getattr(request.app.state, "rate_limiter", None)
    if limiter is None:
        limiter = NoOpRateLimiter()

    result = limiter.check_rate_limit(client_ip, request.url.path)
    if not result.allowed:
        logger.warning(
            "Report generation rate limit exceeded",
            extra={"event": "report.rate_limited", "client_ip": client_ip, "policy_id": result.policy_id},
        )
        raise RateLimitedError(result.reset, headers=result.headers())

    response.headers.update(result.headers())


@router.post(
    "/generate",
    response_model=ReportResponse,
    dependencies=[Depends(enforce_report_rate_limit)],
)
async def generate_report(
    body: ReportGenerateRequest,
    generator: ReportGenerator = Depends(get_report_generator),
    store: ReportStore = Depends(get_report_store),
) -> ReportResponse:
    document = await generator.generate(body.student_data)
    report = store.create(body.student_data, document)
    report_id_var.set(report.id)

    return ReportResponse(
        data=ReportPayload(
            report_id=report.id,
            report=partition(report.document, is_entitled=False),
            is_paid=False,
            created_at=report.created_at,
        )
    )


@router.get("/{report_id}", response_model=ReportResponse)
async def get_report(
    report_id: str,
    claims: Optional[EntitlementClaims] = Depends(optional_entitlement),
    store: ReportStore = Depends(get_report_store),
) -> ReportResponse:
    report_id_var.set(report_id)
    report = store.get_or_raise(report_id)
    entitled = is_entitled(claims, report_id)

    return ReportResponse(
        data=ReportPayload(
            report_id=report.id,
            report=partition(report.document, is_entitled=entitled),
            is_paid=entitled,
            created_at=report.created_at,
        )
    )


@router.get(
    "/{report_id}/pdf",
    response_class=Response,
    responses={200: {"content": {"application/pdf": {}}}},
)
async def get_report_pdf(
    report_id: str,
    claims: EntitlementClaims = Depends(require_entitlement),
    store: ReportStore = Depends(get_report_store),
) -> Response:
    report_id_var.set(report_id)
    if not is_entitled(claims, report_id):
        logger.info(
            "Entitlement token scoped to a different report",
            extra={"event": "entitlement.scope_mismatch", "token_report_id": claims.report_id},
        )
        raise AuthorizationError(
            f"Token is scoped to {claims.report_id}",
            message="Token is not valid for this report.",
        )

    report = store.get_or_raise(report_id)
    pdf_bytes = await run_in_threadpool(render_report_pdf, report)

    return Response(
        content=pdf_bytes,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="college-plan-{report.id}.pdf"'},
    )
