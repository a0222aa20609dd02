#!/usr/bin/env python3
"""
WhatsApp lookup client for the RapidAPI "whatsapp-data1" service.
"""

from __future__ import annotations

import time
import logging
from typing import Any, Mapping, Optional

import requests

from wa_checker.config import (
    DEFAULT_API_HOST, DEFAULT_BASE_URL, LOOKUP_PATH, RATE_LIMIT_HEADERS, REQUEST_TIMEOUT,
)
from wa_checker.core.models import LookupResponse, RateLimitInfo
from wa_checker.utils import mask_api_key

logger = logging.getLogger(__name__)

# HTTP status -> structured error code
_STATUS_ERROR_CODES = {
    400: "bad_request",
    401: "unauthorized",
    403: "unauthorized",
    404: "not_found",
    429: "rate_limited",
}


def _header_int(headers: Mapping[str, str], key: str) -> Optional[int]:
    value = headers.get(RATE_LIMIT_HEADERS[key])
    if value is None or value == "":
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def parse_rate_limit_headers(headers: Mapping[str, str], now: Optional[float] = None) -> Optional[RateLimitInfo]:
    """Build a RateLimitInfo from response headers; reset values are seconds-from-now."""
    remaining = _header_int(headers, 'remaining')
    if remaining is None:
        return None
    now = time.time() if now is None else now

    limit = _header_int(headers, 'limit')
    if limit is None:
        limit = remaining
    reset_in = _header_int(headers, 'reset') or 0

    monthly_reset_in = _header_int(headers, 'monthly_reset')
    monthly_limit = _header_int(headers, 'monthly_limit')
    monthly_remaining = _header_int(headers, 'monthly_remaining')

    return RateLimitInfo(
        remaining=remaining,
        limit=limit,
        reset=int(now + reset_in),
        used=max(0, limit - remaining),
        monthly_remaining=monthly_remaining,
        monthly_limit=monthly_limit,
        monthly_reset=int(now + monthly_reset_in) if monthly_reset_in is not None else None,
        monthly_used=(monthly_limit - monthly_remaining)
        if monthly_limit is not None and monthly_remaining is not None else None,
    )


class WhatsAppLookupClient:
    """Looks up one E.164 number per call."""

    def __init__(self, api_key: str, base_url: str = DEFAULT_BASE_URL, api_host: str = DEFAULT_API_HOST,
                 timeout: float = REQUEST_TIMEOUT):
        self.api_key = api_key
        self.base_url = base_url.rstrip('/')
        self.api_host = api_host
        self.timeout = max(float(timeout), 1.0)
        self.last_rate_limit: Optional[RateLimitInfo] = None

        self.session = requests.Session()
        self._setup_session()
        logger.debug(f"Lookup client for {self.api_host} using key {mask_api_key(api_key)}")

    def _setup_session(self):
        self.session.headers.update(
            {
                "x-rapidapi-key": self.api_key,
                "x-rapidapi-host": self.api_host,
                "Accept": "application/json",
            }
        )

    def get_rate_limit_info(self) -> Optional[RateLimitInfo]:
        return self.last_rate_limit

    def lookup(self, number: str) -> LookupResponse:
        digits = number.lstrip('+')
        url = self.base_url + LOOKUP_PATH.format(number=digits)

        try:
            resp = self.session.request("GET", url, timeout=self.timeout)
        except requests.exceptions.Timeout:
            return LookupResponse(error="Request timeout", error_code="timeout")
        except requests.exceptions.ConnectionError:
            return LookupResponse(error="Connection failed", error_code="connection_error")
        except requests.exceptions.RequestException as e:
            return LookupResponse(error=str(e), error_code="request_error")

        rate_limit = parse_rate_limit_headers(resp.headers or {})
        if rate_limit is not None:
            self.last_rate_limit = rate_limit

        body = self._json_body(resp)
        logger.debug(f"Lookup {number}: status={resp.status_code}")

        if resp.status_code >= 400:
            message = None
            if isinstance(body, dict):
                message = body.get("error") or body.get("message")
            error_code = _STATUS_ERROR_CODES.get(resp.status_code)
            if error_code is None:
                error_code = "server_error" if resp.status_code >= 500 else "http_error"
            return LookupResponse(
                error=str(message or f"HTTP {resp.status_code}"),
                error_code=error_code,
                rate_limit=rate_limit,
                status_code=resp.status_code,
            )

        if not isinstance(body, dict):
            return LookupResponse(error="Unexpected response from API", error_code="bad_response",
                                  rate_limit=rate_limit, status_code=resp.status_code)

        return LookupResponse(data=body, error_code=body.get("code") if body.get("error") else None,
                              rate_limit=rate_limit, status_code=resp.status_code)

    @staticmethod
    def _json_body(resp: requests.Response) -> Optional[Any]:
        try:
            return resp.json()
        except ValueError:
            return None

    def close(self):
        self.session.close()
