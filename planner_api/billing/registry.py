"""Provider registry.

Adapters are built lazily (credentials are only required for providers that
are actually used) and cached as module singletons.
"""

from typing import Callable, Optional

from planner_api.billing.base import PaymentProvider
from planner_api.billing.kryptogo import KryptoGOProvider
from planner_api.billing.lemonsqueezy import LemonSqueezyProvider
from planner_api.config.env import get_default_provider
from planner_api.errors import ValidationError

PROVIDER_FACTORIES: dict[str, Callable[[], PaymentProvider]] = {
    "lemonsqueezy": LemonSqueezyProvider,
    "kryptogo": KryptoGOProvider,
}

_providers: dict[str, PaymentProvider] = {}


def resolve_provider_name(name: Optional[str]) -> str:
    """Normalize a requested provider name; unknown names are a caller error."""
    resolved = (name or get_default_provider()).strip().lower()
    if resolved not in PROVIDER_FACTORIES:
        raise ValidationError(
            f"Unknown payment provider '{resolved}'. "
            f"Supported: {', '.join(sorted(PROVIDER_FACTORIES))}"
        )
    return resolved


def get_provider(name: Optional[str] = None) -> PaymentProvider:
    """Get the provider adapter singleton for `name` (default provider if None)."""
    resolved = resolve_provider_name(name)
    provider = _providers.get(resolved)
    if provider is None:
        provider = PROVIDER_FACTORIES[resolved]()
        _providers[resolved] = provider
    return provider


def register_provider(provider: PaymentProvider) -> None:
    """Install a ready-made adapter (tests, alternative wiring)."""
    _providers[provider.name] = provider


def reset_providers() -> None:
    _providers.clear()
