"""Known spreadsheet header variants for common template field names.

Keys are template field machine names (lower case); values are header spellings
teachers commonly use for that column. Extend this table to teach the column
mapper new synonyms; the matching code does not need to change.
"""
from __future__ import annotations

from typing import Dict, Tuple

FIELD_ALIASES: Dict[str, Tuple[str, ...]] = {
    "student_name": (
        "الاسم",
        "اسم الطالب",
        "اسم الطالبة",
        "الطالب",
        "الطالبة",
        "الاسم الكامل",
        "name",
        "student",
        "full name",
    ),
    "name": (
        "الاسم",
        "الاسم الكامل",
        "اسم المستلم",
        "full name",
        "recipient",
    ),
    "recipient_name": (
        "اسم المستلم",
        "المستلم",
        "الاسم",
        "recipient",
        "name",
    ),
    "grade": (
        "الدرجة",
        "الدرجات",
        "العلامة",
        "النتيجة",
        "المعدل",
        "score",
        "mark",
        "result",
    ),
    "date": (
        "التاريخ",
        "تاريخ",
        "تاريخ الإصدار",
        "اليوم",
        "issue date",
        "day",
    ),
    "issue_date": (
        "تاريخ الإصدار",
        "التاريخ",
        "تاريخ",
        "date",
    ),
    "school_name": (
        "المدرسة",
        "اسم المدرسة",
        "مدرسة",
        "school",
    ),
    "teacher_name": (
        "المعلم",
        "المعلمة",
        "اسم المعلم",
        "اسم المعلمة",
        "teacher",
    ),
    "class": (
        "الصف",
        "الفصل",
        "المرحلة",
        "class",
        "level",
    ),
    "section": (
        "الشعبة",
        "الفصل",
        "القسم",
        "section",
        "division",
    ),
}
