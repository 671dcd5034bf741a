"""Provider registry: maps a provider id to its adapter."""

from __future__ import annotations

import logging
from typing import Optional

from billsync.core.config import Settings, get_settings
from billsync.services.automation.base import BaseAutomationClient

from .aade import AadeAdapter
from .base import ProviderAdapter, UnknownProviderAdapter
from .cosmote import CosmoteAdapter
from .deh import DehAdapter
from .efka import EfkaAdapter
from .eydap import EydapAdapter

logger = logging.getLogger(__name__)

__all__ = [
    "ADAPTERS",
    "SUPPORTED_PROVIDERS",
    "get_adapter",
    "is_supported_provider",
    "ProviderAdapter",
    "UnknownProviderAdapter",
]

ADAPTERS: dict[str, type[ProviderAdapter]] = {
    adapter.provider_id: adapter
    for adapter in (DehAdapter, EydapAdapter, CosmoteAdapter, AadeAdapter, EfkaAdapter)
}

SUPPORTED_PROVIDERS = tuple(ADAPTERS)


def _normalize(provider_id: Optional[str]) -> str:
    return (provider_id or "").strip().upper()


def is_supported_provider(provider_id: Optional[str]) -> bool:
    return _normalize(provider_id) in ADAPTERS


def get_adapter(
    provider_id: str,
    client: BaseAutomationClient,
    *,
    settings: Optional[Settings] = None,
) -> ProviderAdapter:
    """Return the adapter for *provider_id*.

    Unknown ids get an ``UnknownProviderAdapter`` whose outcome is
    ``PROVIDER_NOT_FOUND``, so callers never branch on lookup failure.
    """
    key = _normalize(provider_id)
    adapter_cls = ADAPTERS.get(key)
    if adapter_cls is None:
        logger.warning("No adapter registered for provider %r", provider_id)
        return UnknownProviderAdapter(provider_id)

    settings = settings or get_settings()
    return adapter_cls(client, navigation_timeout_ms=settings.automation_navigation_timeout_ms)
