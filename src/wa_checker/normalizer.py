#!/usr/bin/env python3
"""
Phone Number Normalizer Module
Validates raw phone number strings and canonicalizes them to E.164.
"""

import re
import logging
from typing import Iterable, List, Optional, Sequence

import phonenumbers
from phonenumbers import NumberParseException

from wa_checker.config import DEFAULT_REGION_HINTS, MAX_PHONE_DIGITS, MIN_DIGIT_RATIO, MIN_PHONE_DIGITS
from wa_checker.core.models import PhoneNumberRecord

logger = logging.getLogger(__name__)

_NON_DIGITS = re.compile(r'\D')
_SEPARATORS = re.compile(r'[\s\-()+.]')


class NumberNormalizer:
    """Turn raw strings into PhoneNumberRecords using the phonenumbers library."""

    def __init__(self, region_hints: Optional[Sequence[str]] = None):
        self.region_hints = list(region_hints) if region_hints is not None else list(DEFAULT_REGION_HINTS)

    def normalize(self, raw: str, region_hints: Optional[Sequence[str]] = None) -> PhoneNumberRecord:
        hints = self.region_hints if region_hints is None else list(region_hints)
        original = (raw or "").strip()

        if not original:
            return self._invalid(raw or "", "empty input")

        digits = _NON_DIGITS.sub('', original)
        if not digits:
            return self._invalid(original, "no digits in input")

        # Cheap pre-filter before the heavier validator
        if not MIN_PHONE_DIGITS <= len(digits) <= MAX_PHONE_DIGITS:
            return self._invalid(
                original, f"expected {MIN_PHONE_DIGITS}-{MAX_PHONE_DIGITS} digits, got {len(digits)}"
            )

        error = "Could not parse phone number"

        # First try the digits as an international number
        try:
            parsed = phonenumbers.parse(f"+{digits}", None)
            if phonenumbers.is_valid_number(parsed):
                return self._valid(original, parsed)
            error = "Phone number is not valid"
        except NumberParseException as e:
            logger.debug(f"International parse failed for {original!r}: {e}")

        # Fall back to region-scoped parses of the original text
        for region in hints:
            try:
                parsed = phonenumbers.parse(original, region)
            except NumberParseException:
                continue
            if phonenumbers.is_valid_number(parsed):
                logger.debug(f"Parsed {original!r} using region hint {region}")
                return self._valid(original, parsed, fallback_region=region)
            error = "Phone number is not valid"

        return self._invalid(original, error)

    def _valid(self, original: str, parsed: phonenumbers.PhoneNumber,
               fallback_region: Optional[str] = None) -> PhoneNumberRecord:
        region = phonenumbers.region_code_for_number(parsed) or fallback_region
        return PhoneNumberRecord(
            original=original,
            canonical=phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.E164),
            is_valid=True,
            region=region,
            country_code=str(parsed.country_code) if parsed.country_code else None,
        )

    @staticmethod
    def _invalid(original: str, error: str) -> PhoneNumberRecord:
        # canonical keeps the original text so invalid rows stay traceable
        return PhoneNumberRecord(original=original, canonical=original, is_valid=False, validation_error=error)


def looks_like_phone_number(value: str) -> bool:
    """Heuristic used when scanning input files: 7-15 digits making up most of the value."""
    cleaned = _SEPARATORS.sub('', value or '')
    if not cleaned:
        return False
    digit_count = sum(1 for ch in cleaned if ch.isdigit())
    return (MIN_PHONE_DIGITS <= digit_count <= MAX_PHONE_DIGITS
            and digit_count / len(cleaned) >= MIN_DIGIT_RATIO)


def normalize_numbers(raw_numbers: Iterable[str],
                      region_hints: Optional[Sequence[str]] = None) -> List[PhoneNumberRecord]:
    """Normalize many raw numbers, preserving order."""
    normalizer = NumberNormalizer(region_hints)
    records = [normalizer.normalize(raw) for raw in raw_numbers]
    valid = sum(1 for r in records if r.is_valid)
    logger.info(f"Normalized {len(records)} numbers: {valid} valid, {len(records) - valid} invalid")
    return records
