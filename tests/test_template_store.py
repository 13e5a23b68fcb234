import json
import sys
import tempfile
import unittest
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from bulk_errors import TemplateNotUsable
from template_model import TemplateCanvasElement, TemplateField
from template_store import TemplateStore, bundle_from_dict


def _payload(template_id, name, fields=True):
    return {
        "id": template_id,
        "name": name,
        "canvas": {
            "background_url": "bg.png",
            "canvas_width": 1123,
            "canvas_height": 794,
            "elements": [
                {"id": "e1", "field_id": "f1", "x": 10, "y": 120, "width": 50, "font_size": "28", "is_visible": "false"}
            ],
        },
        "form": {
            "fields": [
                {"id": "f1", "name": "student_name", "label_ar": "اسم الطالب", "validation": {"required": True}}
            ]
            if fields
            else []
        },
    }


class BundleFromDictTests(unittest.TestCase):
    def test_fields_and_elements_are_normalised(self):
        bundle = bundle_from_dict(_payload("cert", "Certificate"))

        self.assertTrue(bundle.is_bulk_usable)
        self.assertEqual(bundle.fields[0], TemplateField("f1", "student_name", label_ar="اسم الطالب", required=True))
        element = bundle.canvas.elements[0]
        self.assertIsInstance(element, TemplateCanvasElement)
        self.assertEqual(element.y, 100.0)
        self.assertEqual(element.font_size, 28.0)
        self.assertFalse(element.is_visible)
        self.assertTrue(bundle.canvas.is_landscape)

    def test_missing_canvas_is_not_usable(self):
        payload = _payload("cert", "Certificate")
        del payload["canvas"]

        self.assertFalse(bundle_from_dict(payload).is_bulk_usable)


class TemplateStoreTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        (self.root / "zeta.json").write_text(json.dumps(_payload("zeta", "Zeta award")), encoding="utf-8")
        (self.root / "empty.json").write_text(json.dumps(_payload("empty", "Empty", fields=False)), encoding="utf-8")
        (self.root / "broken.json").write_text("{not json", encoding="utf-8")
        nested = self.root / "alpha"
        nested.mkdir()
        (nested / "template.json").write_text(json.dumps(_payload("", "Alpha award")), encoding="utf-8")
        self.store = TemplateStore(self.root)

    def tearDown(self):
        self._tmp.cleanup()

    def test_usable_templates_skip_empty_and_broken_files(self):
        names = [bundle.name for bundle in self.store.usable_templates()]

        self.assertEqual(names, ["Alpha award", "Zeta award"])

    def test_relative_background_is_resolved_next_to_template(self):
        bundle = self.store.fetch("zeta")

        self.assertEqual(Path(bundle.canvas.background_url), (self.root / "bg.png").resolve())

    def test_directory_template_takes_folder_name_as_id(self):
        self.assertEqual(self.store.fetch("alpha").id, "alpha")

    def test_fetch_for_bulk_rejects_template_without_fields(self):
        with self.assertRaises(TemplateNotUsable):
            self.store.fetch_for_bulk("empty")

    def test_unknown_template(self):
        with self.assertRaises(TemplateNotUsable):
            self.store.fetch("missing")


if __name__ == "__main__":
    unittest.main()
