#!/usr/bin/env python3
"""
File Loader Module
Reads phone numbers from CSV, XLSX and plain-text uploads.
"""

import os
import csv
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Optional, Sequence

from wa_checker.config import INPUT_FILE_EXTENSIONS
from wa_checker.core.errors import FileParseError
from wa_checker.core.models import PhoneNumberRecord
from wa_checker.normalizer import NumberNormalizer, looks_like_phone_number

logger = logging.getLogger(__name__)


@dataclass
class FileParseResult:
    file_name: str
    numbers: List[PhoneNumberRecord] = field(default_factory=list)

    @property
    def total_numbers(self) -> int:
        return len(self.numbers)

    @property
    def valid_numbers(self) -> int:
        return sum(1 for n in self.numbers if n.is_valid)

    @property
    def invalid_numbers(self) -> int:
        return self.total_numbers - self.valid_numbers


def _cell_text(value: Any) -> Optional[str]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, float):
        # Spreadsheets often store phone numbers as floats
        return str(int(value)) if value.is_integer() else None
    if isinstance(value, int):
        return str(value)
    text = str(value).strip()
    return text or None


def _read_csv(path: str) -> List[str]:
    found = []
    with open(path, 'r', newline='', encoding='utf-8-sig') as f:
        for row in csv.reader(f):
            for value in row:
                text = _cell_text(value)
                if text and looks_like_phone_number(text):
                    found.append(text)
    return found


def _read_xlsx(path: str) -> List[str]:
    import openpyxl

    found = []
    wb = openpyxl.load_workbook(path, read_only=True, data_only=True)
    try:
        for sheet_name in wb.sheetnames:
            for row in wb[sheet_name].iter_rows(values_only=True):
                for value in row:
                    text = _cell_text(value)
                    if text and looks_like_phone_number(text):
                        found.append(text)
    finally:
        wb.close()
    return found


def _read_txt(path: str) -> List[str]:
    with open(path, 'r', encoding='utf-8') as f:
        return _scan_lines(f)


def _scan_lines(lines: Iterable[str]) -> List[str]:
    found = []
    for line in lines:
        text = line.strip()
        if text and looks_like_phone_number(text):
            found.append(text)
    return found


def _process(raw_numbers: List[str], region_hints: Optional[Sequence[str]]) -> List[PhoneNumberRecord]:
    """Normalize values, skipping repeats of the exact same raw string."""
    normalizer = NumberNormalizer(region_hints)
    seen = set()
    records = []
    for raw in raw_numbers:
        if raw in seen:
            continue
        seen.add(raw)
        records.append(normalizer.normalize(raw))
    return records


def parse_file(path: str, region_hints: Optional[Sequence[str]] = None) -> FileParseResult:
    """Extract and normalize every phone-number-like value in a .csv, .xlsx or .txt file."""
    file_name = os.path.basename(path)
    ext = os.path.splitext(path)[1].lower()
    if ext not in INPUT_FILE_EXTENSIONS:
        raise FileParseError(f"Unsupported file format: {ext or file_name}")

    readers = {'.csv': _read_csv, '.xlsx': _read_xlsx, '.txt': _read_txt}
    try:
        raw_numbers = readers[ext](path)
    except Exception as e:
        # csv.Error, UnicodeDecodeError, zipfile.BadZipFile, OSError
        raise FileParseError(f"Failed to parse {file_name}: {e}") from e

    result = FileParseResult(file_name=file_name, numbers=_process(raw_numbers, region_hints))
    logger.info(f"Parsed {file_name}: {result.valid_numbers} valid, {result.invalid_numbers} invalid")
    return result


def parse_text_input(text: str, region_hints: Optional[Sequence[str]] = None) -> FileParseResult:
    """Same as parse_file for pasted text, one number per line."""
    raw_numbers = _scan_lines((text or '').splitlines())
    if not raw_numbers:
        raise FileParseError("No valid phone numbers found in the text input")
    return FileParseResult(file_name='text-input', numbers=_process(raw_numbers, region_hints))
