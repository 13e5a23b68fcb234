import math
import sys
import unittest
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from bulk_errors import ParseError
from sheet_parser import (
    SAMPLE_VALUE_PREFIX,
    ParsedTable,
    _cell_to_string,
    analyze_columns,
    generate_sample_csv,
    generate_sample_excel,
    list_sheet_names,
    parse_bytes,
)
from template_model import TemplateField


class ParseBytesTests(unittest.TestCase):
    def test_csv_with_bom_keeps_header_names(self):
        data = "\ufeffالاسم,الدرجة\nأحمد,95\nسارة,88\n".encode("utf-8")

        table = parse_bytes(data, "students.csv")

        self.assertEqual(table.headers, ("الاسم", "الدرجة"))
        self.assertEqual(table.total_rows, 2)
        self.assertEqual(table.rows[0], {"الاسم": "أحمد", "الدرجة": "95"})

    def test_blank_rows_are_dropped(self):
        data = b"name,grade\nAhmed,95\n,\nSara,88\n"

        table = parse_bytes(data, "students.csv")

        self.assertEqual([row["name"] for row in table.rows], ["Ahmed", "Sara"])

    def test_cells_are_kept_as_text(self):
        data = b"id,grade\n007,95.50\n"

        table = parse_bytes(data, "students.csv")

        self.assertEqual(table.rows[0], {"id": "007", "grade": "95.50"})

    def test_row_with_extra_cells_is_skipped(self):
        data = b"name,grade\nAhmed,95\nSara,88,late\nOmar,70\n"

        with self.assertLogs("sheet_parser", "WARNING"):
            table = parse_bytes(data, "students.csv")

        self.assertEqual([row["name"] for row in table.rows], ["Ahmed", "Omar"])
        self.assertEqual(table.rows[1]["grade"], "70")

    def test_tab_separated_values(self):
        table = parse_bytes(b"name\tgrade\nAhmed\t95\n", "students.tsv")

        self.assertEqual(table.headers, ("name", "grade"))

    def test_unsupported_extension_is_rejected(self):
        with self.assertRaises(ParseError) as ctx:
            parse_bytes(b"whatever", "students.pdf")
        self.assertIn("pdf", str(ctx.exception))

    def test_header_only_file_is_rejected(self):
        with self.assertRaises(ParseError):
            parse_bytes(b"name,grade\n", "students.csv")

    def test_empty_upload_is_rejected(self):
        with self.assertRaises(ParseError):
            parse_bytes(b"", "students.csv")

    def test_corrupt_workbook_is_a_parse_error(self):
        with self.assertRaises(ParseError):
            parse_bytes(b"this is not a zip archive", "students.xlsx")

    def test_excel_workbook_is_read_from_first_sheet(self):
        fields = [TemplateField("f1", "student_name", label_ar="اسم الطالب")]
        workbook = generate_sample_excel(fields)

        table = parse_bytes(workbook, "sample.xlsx")

        self.assertEqual(table.headers, ("اسم الطالب",))
        self.assertEqual(table.rows[0]["اسم الطالب"], SAMPLE_VALUE_PREFIX + "اسم الطالب")
        self.assertEqual(list_sheet_names(workbook, "sample.xlsx"), [table.sheet_name])

    def test_missing_sheet_is_reported(self):
        workbook = generate_sample_excel([TemplateField("f1", "grade")])

        with self.assertRaises(ParseError):
            parse_bytes(workbook, "sample.xlsx", sheet="Nope")


class CellConversionTests(unittest.TestCase):
    def test_integral_floats_lose_their_decimal_point(self):
        self.assertEqual(_cell_to_string(95.0), "95")

    def test_nan_becomes_empty(self):
        self.assertEqual(_cell_to_string(math.nan), "")
        self.assertEqual(_cell_to_string(None), "")


class AnalyzeColumnsTests(unittest.TestCase):
    def _table(self, values):
        return ParsedTable(("col",), tuple({"col": value} for value in values))

    def test_mostly_numeric_column_is_numeric(self):
        info = analyze_columns(self._table(["1", "2", "3", "4"]))[0]

        self.assertTrue(info.is_numeric)
        self.assertEqual(info.type, "number")

    def test_numeric_share_at_threshold_stays_text(self):
        info = analyze_columns(self._table(["95", "88", "absent"]))[0]

        self.assertFalse(info.is_numeric)
        self.assertEqual(info.type, "text")

    def test_dates_and_empty_cells_are_counted(self):
        info = analyze_columns(self._table(["2026-01-01", "2026-01-02", ""]))[0]

        self.assertEqual(info.type, "date")
        self.assertEqual(info.empty_count, 1)
        self.assertEqual(info.unique_count, 2)


class SampleFileTests(unittest.TestCase):
    def test_csv_sample_uses_field_labels_and_bom(self):
        fields = [
            TemplateField("f1", "student_name", label_ar="اسم الطالب"),
            TemplateField("f2", "grade"),
        ]

        content = generate_sample_csv(fields)

        self.assertTrue(content.startswith("\ufeff"))
        header_line = content.lstrip("\ufeff").splitlines()[0]
        self.assertEqual(header_line, "اسم الطالب,grade")


if __name__ == "__main__":
    unittest.main()
