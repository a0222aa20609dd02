#!/usr/bin/env python3
"""
Services Package

Lookup clients used by the bulk engine. The engine only relies on the
LookupClient protocol, so tests and alternative providers can pass any object
with a compatible `lookup(number)` method.
"""

from typing import Protocol

from wa_checker.core.models import CheckSettings, LookupResponse
from wa_checker.services.whatsapp import WhatsAppLookupClient


class LookupClient(Protocol):
    def lookup(self, number: str) -> LookupResponse:
        ...


def create_lookup_client(settings: CheckSettings) -> WhatsAppLookupClient:
    """Build the default HTTP client from run settings."""
    return WhatsAppLookupClient(
        api_key=settings.api_key,
        base_url=settings.base_url,
        api_host=settings.api_host,
        timeout=settings.timeout,
    )
