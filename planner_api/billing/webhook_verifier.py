"""Webhook signature verification (HMAC-SHA256, hex digest).

Both providers sign the exact raw request body with a per-provider shared
secret:

    signature = hmac_sha256(secret, raw_body).hexdigest()

SignaturePolicy decides what happens when the signature header is missing:

    strict   → missing signature is rejected
    relaxed  → missing signature is tolerated (local development only)

A present-but-wrong signature is rejected under both policies. The relaxed
policy cannot be constructed when PLANNER_ENV is production.
"""

import hashlib
import hmac
import logging
from dataclasses import dataclass
from typing import Optional

from planner_api.config.env import get_webhook_secret, is_development_env, is_production_env
from planner_api.errors import ConfigurationError

logger = logging.getLogger(__name__)

SIGNATURE_HEADERS = {
    "lemonsqueezy": "X-Signature",
    "kryptogo": "X-KryptoGO-Signature",
}


def compute_signature(raw_body: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


@dataclass(frozen=True)
class SignaturePolicy:
    require_signature: bool = True

    def __post_init__(self) -> None:
        if not self.require_signature and is_production_env():
            raise ConfigurationError(
                "Relaxed webhook signature policy is not allowed in production"
            )

    @classmethod
    def strict(cls) -> "SignaturePolicy":
        return cls(require_signature=True)

    @classmethod
    def relaxed(cls) -> "SignaturePolicy":
        """Tolerate missing signatures. Raises ConfigurationError in production."""
        return cls(require_signature=False)

    @classmethod
    def for_environment(cls) -> "SignaturePolicy":
        """Strict everywhere except local/dev/test."""
        return cls.relaxed() if is_development_env() else cls.strict()


class WebhookVerifier:
    """Authenticates inbound provider notifications under a SignaturePolicy."""

    def __init__(self, policy: Optional[SignaturePolicy] = None):
        self.policy = policy or SignaturePolicy.strict()

    def verify(
        self,
        raw_body: bytes,
        signature_header: Optional[str],
        shared_secret: Optional[str],
    ) -> bool:
        """True when the notification is acceptable under the policy.

        Only a missing signature can ever be tolerated; a signature that is
        present is always checked, and fails without a secret to check it.
        """
        if not signature_header:
            return not self.policy.require_signature
        if not shared_secret:
            return False

        expected = compute_signature(raw_body, shared_secret)
        return hmac.compare_digest(expected, signature_header.strip().lower())

    def verify_provider(
        self,
        provider: str,
        raw_body: bytes,
        signature_header: Optional[str],
    ) -> bool:
        """verify() with the provider's configured secret.

        Raises:
            ConfigurationError: signatures are required but no secret is
                configured for this provider (our misconfiguration, not the
                sender's fault)
        """
        secret = get_webhook_secret(provider)
        if not secret:
            if self.policy.require_signature:
                logger.error(
                    "Webhook secret is not configured",
                    extra={"event": "webhook.provider_misconfig", "provider": provider},
                )
                raise ConfigurationError(f"Webhook secret for {provider} is not configured")
            if signature_header:
                logger.warning(
                    "Webhook signature present but no secret configured",
                    extra={"event": "webhook.signature_unverifiable", "provider": provider},
                )
                return False
            logger.warning(
                "Accepting unsigned webhook under relaxed policy",
                extra={"event": "webhook.signature_skipped", "provider": provider},
            )
            return True

        return self.verify(raw_body, signature_header, secret)
