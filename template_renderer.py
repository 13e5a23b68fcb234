"""Compose one populated template as an SVG document.

The surface is a fixed ``canvas_width x canvas_height`` SVG holding a background
layer followed by one overlay per visible element whose field has a value.
Element boxes are given in percentages of the canvas and converted to pixels
here; nothing else about layout is computed beyond word wrapping.
"""
from __future__ import annotations

from pathlib import Path
from typing import Dict, Mapping, NamedTuple, Optional, Sequence, Tuple

from xml.dom.minidom import Document, Element

from template_model import IMAGE_FIELD_TYPES, TemplateCanvas, TemplateCanvasElement, TemplateField
from text_fit_util import (
    DEFAULT_FONT_DIRS,
    _format_float,
    _set_multiline_text,
    line_height,
    load_font,
    resolve_font_path,
    wrap_text,
)

SVG_NAMESPACE = "http://www.w3.org/2000/svg"
XLINK_NAMESPACE = "http://www.w3.org/1999/xlink"
BACKGROUND_LAYER_ID = "background"

_ANCHOR_MAP = {
    "left": "start",
    "start": "start",
    "justify": "start",
    "center": "middle",
    "centre": "middle",
    "middle": "middle",
    "right": "end",
    "end": "end",
}


class Overlay(NamedTuple):
    """Pixel-space description of one rendered layer."""

    element_id: str
    field_id: str
    kind: str
    x: float
    y: float
    width: float
    height: Optional[float]
    value: str
    lines: Tuple[str, ...] = ()
    font_size: float = 0.0
    font_family: str = ""
    font_weight: str = "normal"
    font_style: str = "normal"
    color: str = "#000000"
    text_anchor: str = "middle"
    rotation: float = 0.0
    line_spacing: float = 0.0
    font_path: Optional[str] = None


class RenderedSurface(NamedTuple):
    document: Document
    width: int
    height: int
    background_url: str
    overlays: Tuple[Overlay, ...]

    @property
    def root(self) -> Element:
        return self.document.documentElement

    @property
    def font_families(self) -> Tuple[str, ...]:
        families = []
        for overlay in self.overlays:
            if overlay.kind == "text" and overlay.font_family not in families:
                families.append(overlay.font_family)
        return tuple(families)

    def to_svg(self) -> str:
        return self.document.toxml(encoding="utf-8").decode("utf-8")


def _text_anchor(text_align: str) -> str:
    return _ANCHOR_MAP.get(text_align.strip().lower(), "middle")


def _anchor_x(anchor: str, box_x: float, box_width: float) -> float:
    if anchor == "start":
        return box_x
    if anchor == "end":
        return box_x + box_width
    return box_x + box_width / 2.0


def _create_root(document: Document, width: int, height: int) -> Element:
    svg = document.createElement("svg")
    svg.setAttribute("xmlns", SVG_NAMESPACE)
    svg.setAttribute("xmlns:xlink", XLINK_NAMESPACE)
    svg.setAttribute("version", "1.1")
    svg.setAttribute("width", str(width))
    svg.setAttribute("height", str(height))
    svg.setAttribute("viewBox", f"0 0 {width} {height}")
    document.appendChild(svg)
    return svg


def _append_background(document: Document, svg: Element, canvas: TemplateCanvas) -> None:
    if canvas.background_url:
        layer = document.createElement("image")
        layer.setAttribute("xlink:href", canvas.background_url)
        layer.setAttribute("preserveAspectRatio", "none")
    else:
        layer = document.createElement("rect")
        layer.setAttribute("fill", "#ffffff")
    layer.setAttribute("id", BACKGROUND_LAYER_ID)
    layer.setAttribute("x", "0")
    layer.setAttribute("y", "0")
    layer.setAttribute("width", str(canvas.canvas_width))
    layer.setAttribute("height", str(canvas.canvas_height))
    svg.appendChild(layer)


def _image_overlay(
    element: TemplateCanvasElement, value: str, canvas: TemplateCanvas
) -> Overlay:
    box_x = element.x / 100.0 * canvas.canvas_width
    box_y = element.y / 100.0 * canvas.canvas_height
    box_width = element.width / 100.0 * canvas.canvas_width
    if element.height is not None:
        box_height = element.height / 100.0 * canvas.canvas_height
    else:
        box_height = box_width
    return Overlay(
        element_id=element.id,
        field_id=element.field_id,
        kind="image",
        x=box_x,
        y=box_y,
        width=box_width,
        height=box_height,
        value=value,
        rotation=element.rotation,
    )


def _text_overlay(
    element: TemplateCanvasElement,
    value: str,
    canvas: TemplateCanvas,
    font_dirs: Sequence[Path],
) -> Overlay:
    box_x = element.x / 100.0 * canvas.canvas_width
    box_y = element.y / 100.0 * canvas.canvas_height
    box_width = element.width / 100.0 * canvas.canvas_width

    font_path = resolve_font_path(element.font_family, element.font_weight, font_dirs)
    font = load_font(font_path, element.font_size)
    lines = tuple(wrap_text(value, font, box_width))
    spacing = line_height(element.font_size)
    anchor = _text_anchor(element.text_align)

    return Overlay(
        element_id=element.id,
        field_id=element.field_id,
        kind="text",
        x=_anchor_x(anchor, box_x, box_width),
        y=box_y + element.font_size,
        width=box_width,
        height=spacing * len(lines),
        value=value,
        lines=lines,
        font_size=element.font_size,
        font_family=element.font_family,
        font_weight=element.font_weight,
        font_style=element.font_style,
        color=element.color,
        text_anchor=anchor,
        rotation=element.rotation,
        line_spacing=spacing,
        font_path=str(font_path) if font_path is not None else None,
    )


def _rotation_centre(overlay: Overlay) -> Tuple[float, float]:
    if overlay.kind == "text":
        left = overlay.x
        if overlay.text_anchor == "middle":
            left = overlay.x - overlay.width / 2.0
        elif overlay.text_anchor == "end":
            left = overlay.x - overlay.width
        top = overlay.y - overlay.font_size
    else:
        left, top = overlay.x, overlay.y
    return left + overlay.width / 2.0, top + (overlay.height or 0.0) / 2.0


def _apply_rotation(node: Element, overlay: Overlay) -> None:
    if not overlay.rotation:
        return
    centre_x, centre_y = _rotation_centre(overlay)
    node.setAttribute(
        "transform",
        f"rotate({_format_float(overlay.rotation)} {_format_float(centre_x)} {_format_float(centre_y)})",
    )


def _append_overlay(document: Document, svg: Element, overlay: Overlay) -> Element:
    if overlay.kind == "image":
        node = document.createElement("image")
        node.setAttribute("xlink:href", overlay.value)
        node.setAttribute("x", _format_float(overlay.x))
        node.setAttribute("y", _format_float(overlay.y))
        node.setAttribute("width", _format_float(overlay.width))
        node.setAttribute("height", _format_float(overlay.height or overlay.width))
        node.setAttribute("preserveAspectRatio", "xMidYMid meet")
    else:
        node = document.createElement("text")
        node.setAttribute("x", _format_float(overlay.x))
        node.setAttribute("y", _format_float(overlay.y))
        node.setAttribute("font-size", _format_float(overlay.font_size))
        node.setAttribute("font-family", overlay.font_family)
        node.setAttribute("font-weight", overlay.font_weight)
        node.setAttribute("font-style", overlay.font_style)
        node.setAttribute("fill", overlay.color)
        node.setAttribute("text-anchor", overlay.text_anchor)
        node.setAttribute("xml:space", "preserve")
        _set_multiline_text(node, overlay.lines, overlay.x, overlay.line_spacing)

    node.setAttribute("id", overlay.element_id)
    node.setAttribute("data-field-id", overlay.field_id)
    _apply_rotation(node, overlay)
    svg.appendChild(node)
    return node


def render_surface(
    canvas: TemplateCanvas,
    fields: Sequence[TemplateField],
    row_values: Mapping[str, str],
    *,
    font_dirs: Sequence[Path] = DEFAULT_FONT_DIRS,
) -> RenderedSurface:
    """Build the populated surface for one row.

    Elements that are hidden, bound to an unknown field, or whose field value is
    empty produce no node at all.
    """

    fields_by_id: Dict[str, TemplateField] = {field.id: field for field in fields}

    document = Document()
    svg = _create_root(document, canvas.canvas_width, canvas.canvas_height)
    _append_background(document, svg, canvas)

    overlays = []
    for element in canvas.elements:
        if not element.is_visible:
            continue
        field = fields_by_id.get(element.field_id)
        if field is None:
            continue
        value = str(row_values.get(field.id, "") or "").strip()
        if not value:
            continue

        if field.type in IMAGE_FIELD_TYPES:
            overlay = _image_overlay(element, value, canvas)
        else:
            overlay = _text_overlay(element, value, canvas, font_dirs)
        _append_overlay(document, svg, overlay)
        overlays.append(overlay)

    return RenderedSurface(
        document=document,
        width=canvas.canvas_width,
        height=canvas.canvas_height,
        background_url=canvas.background_url,
        overlays=tuple(overlays),
    )
