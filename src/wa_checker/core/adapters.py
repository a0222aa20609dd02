#!/usr/bin/env python3
"""
Adapters mapping raw lookup responses to structured results, and result categorization.
"""

from __future__ import annotations

import re
import time
from typing import Dict, Iterable, List, Optional

from wa_checker.config import NOT_FOUND_ERROR_CODES, RATE_LIMIT_ERROR_CODES
from wa_checker.core.models import (
    ACTIVE, API_ERROR, NOT_PRESENT, PENDING, LookupResponse, LookupResult, Outcome,
)

# Fallback only: used when the API gives no structured error code.
_NOT_FOUND_PATTERNS: List[re.Pattern] = [
    re.compile(r"not found", re.I),
    re.compile(r"not on whatsapp", re.I),
    re.compile(r"does not exist", re.I),
    re.compile(r"doesn'?t exist", re.I),
    re.compile(r"not registered", re.I),
    re.compile(r"no whatsapp account", re.I),
]

_RATE_LIMIT_PATTERNS: List[re.Pattern] = [
    re.compile(r"rate.?limit", re.I),
    re.compile(r"too many requests", re.I),
    re.compile(r"quota exceeded", re.I),
]

STATUS_LABELS: Dict[str, str] = {
    ACTIVE: "Active on WhatsApp",
    NOT_PRESENT: "Not on WhatsApp",
    API_ERROR: "API Error",
    PENDING: "Pending",
}


def _matches(patterns: List[re.Pattern], text: Optional[str]) -> bool:
    return bool(text) and any(p.search(text) for p in patterns)


def categorize(result: LookupResult) -> Outcome:
    """Classify one result. Pure: depends only on the result's own fields."""
    if result.error or result.error_code:
        if result.error_code in NOT_FOUND_ERROR_CODES:
            return NOT_PRESENT
        if result.error_code is None and _matches(_NOT_FOUND_PATTERNS, result.error):
            return NOT_PRESENT
        return API_ERROR

    if result.data is None:
        return PENDING

    if result.data.get("isWAContact") or result.data.get("isUser"):
        return ACTIVE
    return NOT_PRESENT


def is_rate_limit_error(result: LookupResult) -> bool:
    if result.error_code in RATE_LIMIT_ERROR_CODES:
        return True
    return result.error_code is None and _matches(_RATE_LIMIT_PATTERNS, result.error)


def categorize_results(results: Iterable[LookupResult]) -> Dict[str, List[LookupResult]]:
    categories: Dict[str, List[LookupResult]] = {ACTIVE: [], NOT_PRESENT: [], API_ERROR: [], PENDING: []}
    for result in results:
        categories[categorize(result)].append(result)
    return categories


def status_label(result: LookupResult) -> str:
    category = categorize(result)
    if category == API_ERROR and is_rate_limit_error(result):
        return "Rate Limited"
    return STATUS_LABELS[category]


def to_lookup_result(number: str, response: LookupResponse, attempts: int = 1,
                     checked_at: Optional[float] = None) -> LookupResult:
    """Build a LookupResult from a client response.

    Some API failures come back as a JSON body of the form {"error": ..., "success": null};
    those are lifted into the error field so they never masquerade as profile data.
    """
    data = response.data
    error = response.error
    if isinstance(data, dict) and data.get("error"):
        error = error or str(data["error"])
        data = None

    return LookupResult(
        number=number,
        data=data,
        error=error,
        error_code=response.error_code,
        rate_limit=response.rate_limit,
        checked_at=checked_at if checked_at is not None else time.time(),
        attempts=attempts,
    )
