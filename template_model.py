"""Template, field and mapping records shared by the bulk generation modules."""
from __future__ import annotations

import math
from typing import Dict, Mapping, NamedTuple, Optional, Sequence, Tuple

FIELD_TYPES = ("text", "textarea", "image", "date", "select", "signature")
IMAGE_FIELD_TYPES = {"image", "signature"}

DEFAULT_FONT_SIZE = 16.0
DEFAULT_FONT_FAMILY = "Cairo"
DEFAULT_COLOR = "#000000"
DEFAULT_TEXT_ALIGN = "center"


def _is_missing(value: object) -> bool:
    if value is None:
        return True
    if isinstance(value, float):
        return math.isnan(value)
    return False


def _normalise_string(value: object, default: str = "") -> str:
    if _is_missing(value):
        return default
    value_str = str(value).strip()
    return value_str if value_str else default


def _as_float(value: object, default: float) -> float:
    if _is_missing(value):
        return default
    try:
        return float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default


def _as_bool(value: object, default: bool) -> bool:
    if _is_missing(value):
        return default
    if isinstance(value, str):
        return value.strip().lower() not in {"0", "false", "no", "off", ""}
    return bool(value)


class TemplateField(NamedTuple):
    id: str
    name: str
    label_ar: str = ""
    label_en: str = ""
    type: str = "text"
    required: bool = False
    options: Tuple[str, ...] = ()

    @property
    def labels(self) -> Tuple[str, ...]:
        """Every declared localisation of the human label, non-empty only."""

        return tuple(label for label in (self.label_ar, self.label_en) if label)

    @property
    def display_label(self) -> str:
        return self.label_ar or self.label_en or self.name

    @classmethod
    def from_dict(cls, payload: Mapping[str, object]) -> "TemplateField":
        name = _normalise_string(payload.get("name"))
        field_id = _normalise_string(payload.get("id"), name)
        field_type = _normalise_string(payload.get("type"), "text").lower()
        if field_type not in FIELD_TYPES:
            field_type = "text"
        validation = payload.get("validation")
        required = payload.get("required")
        if isinstance(validation, Mapping) and required is None:
            required = validation.get("required")
        options = payload.get("options") or ()
        return cls(
            id=field_id,
            name=name,
            label_ar=_normalise_string(payload.get("label_ar")),
            label_en=_normalise_string(payload.get("label_en")),
            type=field_type,
            required=_as_bool(required, False),
            options=tuple(str(option) for option in options),  # type: ignore[union-attr]
        )


class TemplateCanvasElement(NamedTuple):
    """A positioned overlay; ``x``, ``y``, ``width`` and ``height`` are percentages of the canvas."""

    id: str
    field_id: str
    x: float
    y: float
    width: float
    height: Optional[float] = None
    font_size: float = DEFAULT_FONT_SIZE
    font_family: str = DEFAULT_FONT_FAMILY
    font_weight: str = "normal"
    font_style: str = "normal"
    color: str = DEFAULT_COLOR
    text_align: str = DEFAULT_TEXT_ALIGN
    rotation: float = 0.0
    is_visible: bool = True

    @classmethod
    def from_dict(cls, payload: Mapping[str, object]) -> "TemplateCanvasElement":
        height = payload.get("height")
        return cls(
            id=_normalise_string(payload.get("id")),
            field_id=_normalise_string(payload.get("field_id")),
            x=_clamp_percentage(_as_float(payload.get("x"), 0.0)),
            y=_clamp_percentage(_as_float(payload.get("y"), 0.0)),
            width=_clamp_percentage(_as_float(payload.get("width"), 100.0)),
            height=None if _is_missing(height) else _clamp_percentage(_as_float(height, 0.0)),
            font_size=_as_float(payload.get("font_size"), DEFAULT_FONT_SIZE),
            font_family=_normalise_string(payload.get("font_family"), DEFAULT_FONT_FAMILY),
            font_weight=_normalise_string(payload.get("font_weight"), "normal"),
            font_style=_normalise_string(payload.get("font_style"), "normal"),
            color=_normalise_string(payload.get("color"), DEFAULT_COLOR),
            text_align=_normalise_string(payload.get("text_align"), DEFAULT_TEXT_ALIGN).lower(),
            rotation=_as_float(payload.get("rotation"), 0.0),
            is_visible=_as_bool(payload.get("is_visible"), True),
        )


def _clamp_percentage(value: float) -> float:
    return min(max(value, 0.0), 100.0)


class TemplateCanvas(NamedTuple):
    background_url: str
    canvas_width: int
    canvas_height: int
    elements: Tuple[TemplateCanvasElement, ...] = ()

    @property
    def is_landscape(self) -> bool:
        return self.canvas_width > self.canvas_height

    @classmethod
    def from_dict(cls, payload: Mapping[str, object]) -> "TemplateCanvas":
        elements = payload.get("elements") or ()
        return cls(
            background_url=_normalise_string(payload.get("background_url")),
            canvas_width=int(_as_float(payload.get("canvas_width"), 0.0)),
            canvas_height=int(_as_float(payload.get("canvas_height"), 0.0)),
            elements=tuple(
                TemplateCanvasElement.from_dict(item)
                for item in elements  # type: ignore[union-attr]
                if isinstance(item, Mapping)
            ),
        )


class TemplateBundle(NamedTuple):
    """The ``(canvas, form)`` pair returned by the template store, plus identity."""

    id: str
    name: str
    canvas: Optional[TemplateCanvas]
    fields: Tuple[TemplateField, ...]

    def field_map(self) -> Dict[str, TemplateField]:
        return {field.id: field for field in self.fields}

    @property
    def is_bulk_usable(self) -> bool:
        return (
            self.canvas is not None
            and bool(self.fields)
            and self.canvas.canvas_width > 0
            and self.canvas.canvas_height > 0
        )


class ColumnMapping(NamedTuple):
    template_field: str
    excel_column: Optional[str] = None
    matched_by: Optional[str] = None

    @property
    def is_mapped(self) -> bool:
        return bool(self.excel_column)


def has_mapped_column(mappings: Sequence[ColumnMapping]) -> bool:
    return any(mapping.is_mapped for mapping in mappings)
