import os
import shutil
import tempfile
import unittest

from openpyxl import Workbook

from wa_checker.core.errors import FileParseError
from wa_checker.operations.file_loader import parse_file, parse_text_input


class TestFileLoader(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def write(self, name, content):
        path = os.path.join(self.tmpdir, name)
        with open(path, "w", encoding="utf-8") as f:
            f.write(content)
        return path

    def test_csv_scans_every_cell(self):
        path = self.write("numbers.csv", "Name,Phone,Notes\nAnn,+1 202-555-0102,call later\n"
                                         "Bob,12025550102,+44 7400 123456\nCid,not-a-number,\n")
        result = parse_file(path)

        self.assertEqual(result.file_name, "numbers.csv")
        originals = [r.original for r in result.numbers]
        self.assertEqual(originals, ["+1 202-555-0102", "12025550102", "+44 7400 123456"])
        self.assertEqual(result.valid_numbers, 3)
        self.assertEqual(result.invalid_numbers, 0)

    def test_txt_skips_repeated_raw_values(self):
        path = self.write("numbers.txt", "+12025550102\n\n+12025550102\nhello world\n+447400123456\n")
        result = parse_file(path)
        self.assertEqual([r.canonical for r in result.numbers], ["+12025550102", "+447400123456"])

    def test_xlsx_all_sheets_and_numeric_cells(self):
        wb = Workbook()
        ws = wb.active
        ws.append(["Phone"])
        ws.append([12025550102])
        other = wb.create_sheet("More")
        other.append(["+44 7400 123456", "ignored text"])
        path = os.path.join(self.tmpdir, "numbers.xlsx")
        wb.save(path)

        result = parse_file(path)

        self.assertEqual([r.canonical for r in result.numbers], ["+12025550102", "+447400123456"])

    def test_unsupported_extension(self):
        path = self.write("numbers.pdf", "+12025550102")
        with self.assertRaises(FileParseError):
            parse_file(path)

    def test_unreadable_file(self):
        with self.assertRaises(FileParseError):
            parse_file(os.path.join(self.tmpdir, "missing.csv"))

        path = self.write("broken.xlsx", "this is not a zip archive")
        with self.assertRaises(FileParseError):
            parse_file(path)

    def test_text_input(self):
        result = parse_text_input("+1 202-555-0102\n  12025550102  \nnope\n")
        self.assertEqual(result.file_name, "text-input")
        self.assertEqual(result.total_numbers, 2)

        with self.assertRaises(FileParseError):
            parse_text_input("nothing useful here")


if __name__ == '__main__':
    unittest.main()
