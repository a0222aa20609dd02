#!/usr/bin/env python3
"""
Results Handler Module
Exports a session's results to JSON, CSV or XLSX.
"""

import os
import csv
import json
import time
import logging
from typing import Any, List, Optional

from wa_checker.config import OUTPUT_FORMATS
from wa_checker.core.adapters import status_label
from wa_checker.core.errors import ExportError
from wa_checker.core.models import ACTIVE, LookupResult, Session
from wa_checker.utils import format_timestamp

logger = logging.getLogger(__name__)

BASE_COLUMNS = ['Phone Number', 'Has WhatsApp', 'Is Business', 'Name', 'Error']
DETAIL_COLUMNS = ['About', 'Country Code', 'Profile Picture']


def default_export_name(session: Session, fmt: str = 'json') -> str:
    """whatsapp-check-<session id>-<YYYY-MM-DD>.<ext>"""
    date = time.strftime('%Y-%m-%d', time.localtime(session.start_time))
    return f"whatsapp-check-{session.id}-{date}.{fmt}"


def _yes_no(value: Any) -> str:
    return 'Yes' if value else 'No'


class ResultsHandler:
    """Writes session exports; the session is only read."""

    def export_session(self, session: Session, output_file: str, fmt: Optional[str] = None, *,
                       include_errors: bool = True, include_details: bool = True,
                       active_only: bool = False, overwrite: bool = False) -> str:
        """Export `session` and return the path actually written.

        An existing file is kept and the export goes to a numbered sibling
        (`name_1.csv`, ...) unless `overwrite` is set.
        """
        fmt = (fmt or self._infer_format_from_path(output_file)).lower()
        if fmt not in OUTPUT_FORMATS:
            raise ExportError(f"Unsupported export format: {fmt}")

        results = self._filter_results(session.results, include_errors, active_only)

        final_filepath = output_file
        if os.path.exists(output_file) and not overwrite:
            final_filepath = self._generate_new_filename(output_file)
            logger.info(f"{output_file} exists, exporting to {final_filepath}")

        try:
            os.makedirs(os.path.dirname(final_filepath) or '.', exist_ok=True)
            if fmt == 'json':
                self._write_json(final_filepath, session, results, include_details)
            elif fmt == 'csv':
                self._write_csv(final_filepath, results, include_details)
            else:
                self._write_xlsx(final_filepath, session, results, include_details)
        except OSError as e:
            raise ExportError(f"Error saving results to {final_filepath}: {e}") from e

        logger.info(f"Exported {len(results)} results of session {session.id} to {final_filepath}")
        return final_filepath

    @staticmethod
    def _filter_results(results: List[LookupResult], include_errors: bool, active_only: bool) -> List[LookupResult]:
        if active_only:
            results = [r for r in results if r.outcome == ACTIVE]
        if not include_errors:
            results = [r for r in results if not r.error]
        return results

    def _infer_format_from_path(self, path: str) -> str:
        ext = os.path.splitext(path)[1].lower()
        if ext == '.csv':
            return 'csv'
        if ext == '.xlsx':
            return 'xlsx'
        return 'json'

    @staticmethod
    def _row(result: LookupResult, include_details: bool) -> List[Any]:
        data = result.data or {}
        row = [
            result.number,
            _yes_no(result.outcome == ACTIVE),
            _yes_no(data.get('isBusiness')),
            data.get('name') or '',
            result.error or '',
        ]
        if include_details:
            row += [
                data.get('about') or '',
                data.get('countryCode') or '',
                data.get('profilePic') or '',
            ]
        return row

    def _write_json(self, filepath: str, session: Session, results: List[LookupResult], include_details: bool):
        if include_details:
            exported = [r.to_dict() for r in results]
        else:
            exported = [
                {'number': r.number, 'has_whatsapp': r.outcome == ACTIVE, 'error': r.error}
                for r in results
            ]

        data_to_save = {
            'session': {
                'id': session.id,
                'file_name': session.file_name,
                'start_time': session.start_time,
                'end_time': session.end_time,
                'total_numbers': session.total_numbers,
                'completed_numbers': session.completed_numbers,
                'successful_checks': session.successful_checks,
                'failed_checks': session.failed_checks,
                'status': session.status,
            },
            'exported_at': time.time(),
            'results': exported,
        }
        with open(filepath, 'w', encoding='utf-8') as f:
            json.dump(data_to_save, f, indent=2, ensure_ascii=False)

    def _write_csv(self, filepath: str, results: List[LookupResult], include_details: bool):
        headers = BASE_COLUMNS + (DETAIL_COLUMNS if include_details else [])
        with open(filepath, 'w', newline='', encoding='utf-8') as f:
            writer = csv.writer(f, quoting=csv.QUOTE_MINIMAL)
            writer.writerow(headers)
            for r in results:
                writer.writerow(self._row(r, include_details))

    def _write_xlsx(self, filepath: str, session: Session, results: List[LookupResult], include_details: bool):
        from openpyxl import Workbook
        from openpyxl.styles import Font, PatternFill, Alignment
        from openpyxl.utils import get_column_letter

        HEADER_FILL = PatternFill(start_color="1F4E79", end_color="1F4E79", fill_type="solid")
        HEADER_FONT = Font(bold=True, color="FFFFFF", size=11)
        STATUS_FILL = {
            'Yes': PatternFill(start_color="C6EFCE", end_color="C6EFCE", fill_type="solid"),
            'No': PatternFill(start_color="FFC7CE", end_color="FFC7CE", fill_type="solid"),
        }

        wb = Workbook()

        # Summary sheet
        ws_summary = wb.active
        ws_summary.title = "Summary"
        ws_summary.column_dimensions["A"].width = 22
        ws_summary.column_dimensions["B"].width = 40
        summary_data = [
            ("Session Summary", ""),
            ("Session ID", session.id),
            ("File Name", session.file_name),
            ("Start Time", format_timestamp(session.start_time)),
            ("End Time", format_timestamp(session.end_time)),
            ("Total Numbers", session.total_numbers),
            ("Completed Numbers", session.completed_numbers),
            ("Successful Checks", session.successful_checks),
            ("Failed Checks", session.failed_checks),
            ("Status", session.status),
        ]
        for row_idx, (label, value) in enumerate(summary_data, 1):
            ws_summary.cell(row=row_idx, column=1, value=label)
            ws_summary.cell(row=row_idx, column=2, value=value)
        ws_summary.cell(row=1, column=1).font = Font(bold=True, size=14)

        # Results sheet
        ws = wb.create_sheet("Results")
        headers = BASE_COLUMNS + (DETAIL_COLUMNS + ['Status', 'Verified Level'] if include_details else [])
        for col_idx, label in enumerate(headers, 1):
            cell = ws.cell(row=1, column=col_idx, value=label)
            cell.fill = HEADER_FILL
            cell.font = HEADER_FONT
            cell.alignment = Alignment(horizontal="center")
            ws.column_dimensions[get_column_letter(col_idx)].width = 18

        for row_idx, r in enumerate(results, 2):
            row = self._row(r, include_details)
            if include_details:
                verified = (r.data or {}).get('verifiedLevel')
                row += [status_label(r), '' if verified is None else str(verified)]
            for col_idx, value in enumerate(row, 1):
                ws.cell(row=row_idx, column=col_idx, value=value)
            ws.cell(row=row_idx, column=2).fill = STATUS_FILL[row[1]]

        ws.freeze_panes = "A2"
        ws.auto_filter.ref = f"A1:{get_column_letter(len(headers))}{len(results) + 1}"
        wb.save(filepath)

    def _generate_new_filename(self, original_filepath: str) -> str:
        """Generate a new filename by adding a number suffix."""
        base_path, ext = os.path.splitext(original_filepath)
        counter = 1

        while True:
            new_path = f"{base_path}_{counter}{ext}"
            if not os.path.exists(new_path):
                return new_path
            counter += 1

            if counter > 1000:
                raise ExportError("Could not generate unique filename after 1000 attempts")
