"""Bearer-credential dependencies for entitlement-gated routes.

require_entitlement:
  no Authorization header / not Bearer → 401 AuthenticationError
  bad signature, malformed, expired    → 403 AuthorizationError
  valid                                → EntitlementClaims (also on request.state.entitlement)

optional_entitlement: same decoding, but any failure yields None so public
routes can fall back to the free preview.

Signature validity and report scope are separate questions; routes call
is_entitled(claims, report_id) for the latter.
"""

import logging
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from planner_api.auth.entitlement_token import EntitlementClaims, decode_token
from planner_api.errors import AuthenticationError, AuthorizationError

logger = logging.getLogger(__name__)

# HTTPBearer scheme for OpenAPI docs
entitlement_security = HTTPBearer(auto_error=False, description="Entitlement token (JWT Bearer)")


def require_entitlement(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(entitlement_security),
) -> EntitlementClaims:
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("Missing bearer credential")

    try:
        claims = decode_token(credentials.credentials)
    except AuthorizationError:
        logger.info(
            "Rejected entitlement token",
            extra={"event": "entitlement.token.rejected", "path": request.url.path},
        )
        raise

    request.state.entitlement = claims
    return claims


def optional_entitlement(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(entitlement_security),
) -> Optional[EntitlementClaims]:
    if credentials is None or not credentials.credentials:
        return None

    try:
        claims = decode_token(credentials.credentials)
    except AuthorizationError:
        logger.info(
            "Ignoring invalid entitlement token on public route",
            extra={"event": "entitlement.token.ignored", "path": request.url.path},
        )
        return None

    request.state.entitlement = claims
    return claims
