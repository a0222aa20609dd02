#!/usr/bin/env python3
"""
Number Processing Module
Handles batch preparation: normalization, duplicate removal and merging uploads.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence, Tuple

from wa_checker.core.models import PhoneNumberRecord
from wa_checker.normalizer import NumberNormalizer

logger = logging.getLogger(__name__)


@dataclass
class PreparedBatch:
    valid: List[PhoneNumberRecord] = field(default_factory=list)
    invalid: List[PhoneNumberRecord] = field(default_factory=list)
    duplicates: int = 0

    @property
    def total(self) -> int:
        return len(self.valid) + len(self.invalid)


def deduplicate(records: Iterable[PhoneNumberRecord]) -> List[PhoneNumberRecord]:
    """Drop records whose canonical number was already seen, keeping first-seen order."""
    seen = set()
    unique: List[PhoneNumberRecord] = []
    for record in records:
        if record.canonical in seen:
            continue
        seen.add(record.canonical)
        unique.append(record)
    return unique


class NumberProcessor:
    """Prepares phone number batches without UI side-effects."""

    def __init__(self, region_hints: Optional[Sequence[str]] = None):
        self.normalizer = NumberNormalizer(region_hints)

    def deduplicate(self, records: Iterable[PhoneNumberRecord]) -> Tuple[List[PhoneNumberRecord], int]:
        records = list(records)
        unique = deduplicate(records)
        return unique, len(records) - len(unique)

    def filter_new_numbers(self, existing: Iterable[PhoneNumberRecord],
                           new: Iterable[PhoneNumberRecord]) -> Tuple[List[PhoneNumberRecord], int]:
        """Records from `new` not already present in `existing` (by canonical number)."""
        existing_set = {r.canonical for r in existing}
        new = list(new)
        unique = [r for r in deduplicate(new) if r.canonical not in existing_set]
        return unique, len(new) - len(unique)

    def prepare_batch(self, raw_numbers: Iterable[str]) -> PreparedBatch:
        """Normalize raw strings and split them into unique valid and invalid records."""
        records = [self.normalizer.normalize(raw) for raw in raw_numbers]
        unique, duplicates = self.deduplicate(records)

        batch = PreparedBatch(duplicates=duplicates)
        for record in unique:
            (batch.valid if record.is_valid else batch.invalid).append(record)

        logger.info(
            f"Prepared batch: {len(batch.valid)} valid, {len(batch.invalid)} invalid, "
            f"{duplicates} duplicates removed"
        )
        return batch
