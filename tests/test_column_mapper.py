import sys
import unittest
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from column_mapper import (
    MATCH_ALIAS,
    MATCH_EXACT,
    MATCH_FUZZY,
    MATCH_MANUAL,
    auto_map_columns,
    mapped_row_values,
    match_alias,
    match_exact,
    match_field,
    match_fuzzy,
    override_mapping,
    shared_columns,
)
from sheet_parser import ParsedTable
from template_model import ColumnMapping, TemplateField, has_mapped_column


STUDENT = TemplateField("f-student", "student_name", label_ar="اسم الطالب", label_en="Student name")
GRADE = TemplateField("f-grade", "grade", label_ar="الدرجة", label_en="Grade")
DATE = TemplateField("f-date", "date", label_en="Date")


class TierTests(unittest.TestCase):
    def test_exact_match_ignores_case(self):
        self.assertEqual(match_exact(GRADE, ["Name", "GRADE"]), "GRADE")

    def test_exact_match_accepts_any_localised_label(self):
        self.assertEqual(match_exact(STUDENT, ["اسم الطالب", "Other"]), "اسم الطالب")

    def test_fuzzy_match_contains_label(self):
        self.assertEqual(match_fuzzy(GRADE, ["Final grade (%)"]), "Final grade (%)")

    def test_fuzzy_match_contained_by_label(self):
        self.assertEqual(match_fuzzy(STUDENT, ["student"]), "student")

    def test_alias_match_uses_dictionary(self):
        field = TemplateField("f1", "school_name")
        self.assertEqual(match_alias(field, ["التاريخ", "اسم المدرسة"]), "اسم المدرسة")

    def test_alias_table_can_be_replaced(self):
        field = TemplateField("f1", "mentor")
        self.assertEqual(match_alias(field, ["Coach"], aliases={"mentor": ("coach",)}), "Coach")

    def test_unknown_field_has_no_alias(self):
        self.assertIsNone(match_alias(TemplateField("f1", "favourite_colour"), ["اللون"]))


class PriorityTests(unittest.TestCase):
    def test_exact_label_beats_earlier_substring_header(self):
        header, tier = match_field(GRADE, ["grade_points", "Grade"])

        self.assertEqual(header, "Grade")
        self.assertEqual(tier, MATCH_EXACT)

    def test_fuzzy_beats_alias(self):
        header, tier = match_field(GRADE, ["العلامة", "Grade average"])

        self.assertEqual(header, "Grade average")
        self.assertEqual(tier, MATCH_FUZZY)

    def test_alias_resolution_for_student_name(self):
        field = TemplateField("f-student", "student_name")

        header, tier = match_field(field, ["الاسم", "الدرجة"])

        self.assertEqual(header, "الاسم")
        self.assertEqual(tier, MATCH_ALIAS)

    def test_alias_resolution_with_arabic_label(self):
        header, tier = match_field(STUDENT, ["الاسم", "الدرجة"])

        self.assertEqual((header, tier), ("الاسم", MATCH_ALIAS))

    def test_no_match_leaves_field_unmapped(self):
        self.assertEqual(match_field(DATE, ["الاسم", "الدرجة"]), (None, None))


class AutoMapTests(unittest.TestCase):
    headers = ["الاسم", "الدرجة", "ملاحظات"]

    def test_one_entry_per_field_in_field_order(self):
        mappings = auto_map_columns(self.headers, [STUDENT, GRADE, DATE])

        self.assertEqual([m.template_field for m in mappings], ["f-student", "f-grade", "f-date"])
        self.assertEqual(mappings[0].excel_column, "الاسم")
        self.assertEqual(mappings[1], ColumnMapping("f-grade", "الدرجة", MATCH_EXACT))
        self.assertFalse(mappings[2].is_mapped)

    def test_mapping_is_deterministic(self):
        first = auto_map_columns(self.headers, [STUDENT, GRADE, DATE])
        second = auto_map_columns(self.headers, [STUDENT, GRADE, DATE])

        self.assertEqual(first, second)

    def test_field_order_does_not_change_choices(self):
        forward = {m.template_field: m for m in auto_map_columns(self.headers, [STUDENT, GRADE, DATE])}
        backward = {m.template_field: m for m in auto_map_columns(self.headers, [DATE, GRADE, STUDENT])}

        self.assertEqual(forward, backward)

    def test_empty_header_list_never_raises(self):
        mappings = auto_map_columns([], [STUDENT, GRADE])

        self.assertFalse(has_mapped_column(mappings))

    def test_two_fields_may_share_a_column(self):
        recipient = TemplateField("f-recipient", "recipient_name")

        mappings = auto_map_columns(["الاسم"], [STUDENT, recipient])

        self.assertEqual(shared_columns(mappings), {"الاسم": ["f-student", "f-recipient"]})


class OverrideTests(unittest.TestCase):
    def test_manual_choice_replaces_auto_match(self):
        mappings = auto_map_columns(["الاسم", "Full name"], [STUDENT])

        updated = override_mapping(mappings, "f-student", "Full name")

        self.assertEqual(updated[0], ColumnMapping("f-student", "Full name", MATCH_MANUAL))
        self.assertEqual(mappings[0].excel_column, "الاسم")

    def test_clearing_a_mapping(self):
        mappings = [ColumnMapping("f-grade", "الدرجة", MATCH_EXACT)]

        updated = override_mapping(mappings, "f-grade", None)

        self.assertEqual(updated, [ColumnMapping("f-grade", None, None)])


class RowValueTests(unittest.TestCase):
    def test_unmapped_and_absent_columns_resolve_to_empty(self):
        table = ParsedTable(("الاسم",), ({"الاسم": "  أحمد "},))
        mappings = [
            ColumnMapping("f-student", "الاسم", MATCH_ALIAS),
            ColumnMapping("f-grade", None, None),
            ColumnMapping("f-date", "Missing", MATCH_MANUAL),
        ]

        values = mapped_row_values(table, mappings, 0)

        self.assertEqual(values, {"f-student": "أحمد", "f-grade": "", "f-date": ""})


if __name__ == "__main__":
    unittest.main()
