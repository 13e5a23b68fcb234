import sys
import unittest
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from template_model import TemplateCanvas, TemplateCanvasElement, TemplateField
from template_renderer import BACKGROUND_LAYER_ID, render_surface

NO_FONT_DIRS = ()

FIELDS = (
    TemplateField("f-name", "name", label_en="Name"),
    TemplateField("f-grade", "grade", label_en="Grade"),
    TemplateField("f-photo", "photo", type="image"),
)


def _canvas(*elements, background="/tmp/background.png"):
    return TemplateCanvas(background, 1000, 500, tuple(elements))


def _element(element_id, field_id, **overrides):
    values = dict(x=10.0, y=20.0, width=30.0, font_size=24.0, text_align="center")
    values.update(overrides)
    return TemplateCanvasElement(element_id, field_id, **values)


def _texts(surface):
    return surface.root.getElementsByTagName("text")


class RenderSurfaceTests(unittest.TestCase):
    def test_background_layer_covers_canvas(self):
        surface = render_surface(_canvas(), FIELDS, {}, font_dirs=NO_FONT_DIRS)

        root = surface.root
        self.assertEqual(root.getAttribute("width"), "1000")
        self.assertEqual(root.getAttribute("height"), "500")
        background = root.getElementsByTagName("image")[0]
        self.assertEqual(background.getAttribute("id"), BACKGROUND_LAYER_ID)
        self.assertEqual(background.getAttribute("xlink:href"), "/tmp/background.png")
        self.assertEqual(background.getAttribute("width"), "1000")

    def test_missing_background_is_a_white_rect(self):
        surface = render_surface(_canvas(background=""), FIELDS, {}, font_dirs=NO_FONT_DIRS)

        rects = surface.root.getElementsByTagName("rect")
        self.assertEqual(len(rects), 1)
        self.assertEqual(rects[0].getAttribute("fill"), "#ffffff")

    def test_percentages_become_pixels(self):
        canvas = _canvas(_element("e1", "f-name"))

        surface = render_surface(canvas, FIELDS, {"f-name": "Ahmed"}, font_dirs=NO_FONT_DIRS)

        text = _texts(surface)[0]
        # box starts at 100px and is 300px wide; centred text anchors at 250px
        self.assertEqual(text.getAttribute("x"), "250")
        self.assertEqual(text.getAttribute("y"), "124")
        self.assertEqual(text.getAttribute("text-anchor"), "middle")
        self.assertEqual(text.getAttribute("font-size"), "24")

    def test_alignment_selects_box_edge(self):
        canvas = _canvas(
            _element("left", "f-name", text_align="left"),
            _element("right", "f-grade", text_align="right"),
        )

        surface = render_surface(canvas, FIELDS, {"f-name": "A", "f-grade": "B"}, font_dirs=NO_FONT_DIRS)

        left, right = _texts(surface)
        self.assertEqual((left.getAttribute("x"), left.getAttribute("text-anchor")), ("100", "start"))
        self.assertEqual((right.getAttribute("x"), right.getAttribute("text-anchor")), ("400", "end"))

    def test_style_attributes_are_copied(self):
        canvas = _canvas(
            _element("e1", "f-name", font_family="Amiri", font_weight="bold", color="#112233")
        )

        surface = render_surface(canvas, FIELDS, {"f-name": "Ahmed"}, font_dirs=NO_FONT_DIRS)

        text = _texts(surface)[0]
        self.assertEqual(text.getAttribute("font-family"), "Amiri")
        self.assertEqual(text.getAttribute("font-weight"), "bold")
        self.assertEqual(text.getAttribute("fill"), "#112233")
        self.assertEqual(text.getAttribute("data-field-id"), "f-name")

    def test_rotation_turns_about_box_centre(self):
        canvas = _canvas(_element("e1", "f-name", rotation=45))

        surface = render_surface(canvas, FIELDS, {"f-name": "Ahmed"}, font_dirs=NO_FONT_DIRS)

        transform = _texts(surface)[0].getAttribute("transform")
        self.assertTrue(transform.startswith("rotate(45 250 "), transform)

    def test_long_text_wraps_into_tspans(self):
        canvas = _canvas(_element("e1", "f-name", width=5.0, font_size=16.0))
        value = "alpha beta gamma delta"

        surface = render_surface(canvas, FIELDS, {"f-name": value}, font_dirs=NO_FONT_DIRS)

        tspans = _texts(surface)[0].getElementsByTagName("tspan")
        self.assertGreater(len(tspans), 1)
        self.assertEqual(" ".join(t.firstChild.data for t in tspans), value)
        self.assertEqual(tspans[0].getAttribute("dy"), "0")
        self.assertEqual(surface.overlays[0].lines, tuple(t.firstChild.data for t in tspans))

    def test_explicit_newlines_are_kept(self):
        canvas = _canvas(_element("e1", "f-name", width=90.0))

        surface = render_surface(canvas, FIELDS, {"f-name": "first\nsecond"}, font_dirs=NO_FONT_DIRS)

        self.assertEqual(surface.overlays[0].lines, ("first", "second"))

    def test_image_field_becomes_image_overlay(self):
        canvas = _canvas(_element("e1", "f-photo", width=10.0, height=20.0))

        surface = render_surface(canvas, FIELDS, {"f-photo": "/tmp/photo.png"}, font_dirs=NO_FONT_DIRS)

        images = surface.root.getElementsByTagName("image")
        self.assertEqual(len(images), 2)
        photo = images[1]
        self.assertEqual(photo.getAttribute("xlink:href"), "/tmp/photo.png")
        self.assertEqual(photo.getAttribute("width"), "100")
        self.assertEqual(photo.getAttribute("height"), "100")
        self.assertEqual(_texts(surface).length, 0)


class SuppressionTests(unittest.TestCase):
    def test_empty_value_contributes_no_node(self):
        canvas = _canvas(_element("e1", "f-name"), _element("e2", "f-grade"))

        surface = render_surface(canvas, FIELDS, {"f-name": "Ahmed", "f-grade": "   "}, font_dirs=NO_FONT_DIRS)

        self.assertEqual([t.getAttribute("id") for t in _texts(surface)], ["e1"])
        self.assertEqual(len(surface.overlays), 1)

    def test_hidden_element_contributes_no_node(self):
        canvas = _canvas(_element("e1", "f-name", is_visible=False))

        surface = render_surface(canvas, FIELDS, {"f-name": "Ahmed"}, font_dirs=NO_FONT_DIRS)

        self.assertEqual(_texts(surface).length, 0)

    def test_element_bound_to_unknown_field_is_skipped(self):
        canvas = _canvas(_element("e1", "f-missing"))

        surface = render_surface(canvas, FIELDS, {"f-missing": "value"}, font_dirs=NO_FONT_DIRS)

        self.assertEqual(surface.overlays, ())


class PurityTests(unittest.TestCase):
    def test_same_input_gives_identical_surface(self):
        canvas = _canvas(
            _element("e1", "f-name", rotation=-10),
            _element("e2", "f-grade", text_align="left"),
            _element("e3", "f-photo"),
        )
        values = {"f-name": "سارة أحمد", "f-grade": "95", "f-photo": "/tmp/p.png"}

        first = render_surface(canvas, FIELDS, values, font_dirs=NO_FONT_DIRS)
        second = render_surface(canvas, FIELDS, values, font_dirs=NO_FONT_DIRS)

        self.assertEqual(first.to_svg(), second.to_svg())
        self.assertEqual(first.overlays, second.overlays)
        self.assertIsNot(first.document, second.document)


if __name__ == "__main__":
    unittest.main()
