#!/usr/bin/env python3
"""
Phone Number Generator Module
Generates random, structurally valid phone numbers for a country (test batches).
Patterns use 'x' for any digit and '[..]' for a digit from a set.
"""

import re
import random
import logging
from typing import List, Optional

from wa_checker.config import COUNTRY_PATTERNS, MAX_GENERATED_NUMBERS
from wa_checker.core.models import PhoneNumberRecord
from wa_checker.normalizer import NumberNormalizer

logger = logging.getLogger(__name__)

_TOKEN = re.compile(r'\[(\d+)\]|[xX]|.')


class RandomNumberGenerator:
    """Fill country patterns with random digits until enough valid numbers are found."""

    def __init__(self, country: str, rng: Optional[random.Random] = None):
        self.country = country.upper()
        if self.country not in COUNTRY_PATTERNS:
            raise ValueError(f"Unsupported country: {country}. "
                             f"Supported: {', '.join(sorted(COUNTRY_PATTERNS))}")
        self.patterns = COUNTRY_PATTERNS[self.country]['patterns']
        self.rng = rng or random.Random()
        self.normalizer = NumberNormalizer([self.country])

    def fill_pattern(self, pattern: str) -> str:
        out = []
        for match in _TOKEN.finditer(pattern):
            token = match.group(0)
            if match.group(1):
                out.append(self.rng.choice(match.group(1)))
            elif token in ('x', 'X'):
                out.append(str(self.rng.randint(0, 9)))
            else:
                out.append(token)
        return ''.join(out)

    def generate(self, quantity: int) -> List[PhoneNumberRecord]:
        if not 1 <= quantity <= MAX_GENERATED_NUMBERS:
            raise ValueError(f"Quantity must be between 1 and {MAX_GENERATED_NUMBERS}")

        numbers: List[PhoneNumberRecord] = []
        seen = set()
        max_attempts = quantity * 10
        attempts = 0

        while len(numbers) < quantity and attempts < max_attempts:
            attempts += 1
            candidate = self.fill_pattern(self.rng.choice(self.patterns))
            if candidate in seen:
                continue
            record = self.normalizer.normalize(candidate)
            if record.is_valid:
                seen.add(candidate)
                numbers.append(record)

        if len(numbers) < quantity:
            logger.warning(f"Only generated {len(numbers)} of {quantity} numbers for {self.country} "
                           f"after {attempts} attempts")
        else:
            logger.info(f"Generated {len(numbers)} numbers for {COUNTRY_PATTERNS[self.country]['name']}")
        return numbers


def generate_random_numbers(country: str, quantity: int, rng: Optional[random.Random] = None) -> List[PhoneNumberRecord]:
    """Generate up to `quantity` unique valid numbers for `country`."""
    return RandomNumberGenerator(country, rng).generate(quantity)


def supported_countries() -> List[str]:
    return sorted(COUNTRY_PATTERNS)
