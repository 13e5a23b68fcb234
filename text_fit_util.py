"""Font lookup, text measurement and line wrapping for template overlays."""
from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union

from PIL import ImageFont
from xml.dom.minidom import Element

logger = logging.getLogger(__name__)

FontType = Union[ImageFont.FreeTypeFont, ImageFont.ImageFont]

DEFAULT_FONT_DIRS: Tuple[Path, ...] = (
    Path(__file__).resolve().parent / "fonts",
    Path.home() / ".fonts",
    Path.home() / ".local" / "share" / "fonts",
    Path("/usr/share/fonts"),
    Path("/usr/local/share/fonts"),
    Path(os.environ.get("WINDIR", r"C:\Windows")) / "Fonts",
)
FONT_EXTENSIONS = {".ttf", ".otf", ".ttc"}
_BOLD_WEIGHTS = {"bold", "bolder", "600", "700", "800", "900"}
_WEIGHT_SUFFIXES = ("regular", "medium", "book", "normal", "")
LINE_SPACING_EM = 1.2


def _format_float(value: float) -> str:
    """Format floats for XML attributes without trailing zeros."""

    text = f"{value:.4f}".rstrip("0").rstrip(".")
    return text or "0"


def _normalize_font_name(name: str) -> str:
    return "".join(ch for ch in name.lower() if ch.isalnum())


def _primary_family(font_family: str) -> str:
    """Return the first family of a CSS font stack without quotes."""

    first = font_family.split(",")[0] if font_family else ""
    return first.strip().strip("\"'")


@lru_cache(maxsize=8)
def _font_index(font_dirs: Tuple[Path, ...]) -> Dict[str, Path]:
    index: Dict[str, Path] = {}
    for directory in font_dirs:
        if not directory.is_dir():
            continue
        try:
            paths = sorted(directory.rglob("*"))
        except OSError as exc:
            logger.debug("Cannot scan font directory %s: %s", directory, exc)
            continue
        for path in paths:
            if path.suffix.lower() not in FONT_EXTENSIONS:
                continue
            index.setdefault(_normalize_font_name(path.stem), path)
    return index


def resolve_font_path(
    font_family: str,
    font_weight: str = "normal",
    font_dirs: Sequence[Path] = DEFAULT_FONT_DIRS,
) -> Optional[Path]:
    """Locate a font file for ``font_family`` in ``font_dirs``.

    File stems are compared after stripping everything but letters and digits, so
    ``"Noto Naskh Arabic"`` finds ``NotoNaskhArabic-Regular.ttf``.
    """

    family_key = _normalize_font_name(_primary_family(font_family))
    if not family_key:
        return None

    index = _font_index(tuple(Path(directory) for directory in font_dirs))
    suffixes = ("bold",) + _WEIGHT_SUFFIXES if str(font_weight).lower() in _BOLD_WEIGHTS else _WEIGHT_SUFFIXES
    for suffix in suffixes:
        candidate = index.get(family_key + suffix)
        if candidate is not None:
            return candidate

    for key in sorted(index):
        if key.startswith(family_key):
            return index[key]
    return None


@lru_cache(maxsize=256)
def _load_font_cached(font_path: Optional[str], size: int) -> FontType:
    if font_path is not None:
        try:
            return ImageFont.truetype(font_path, size)
        except OSError as exc:
            logger.warning("Failed to load font %s: %s", font_path, exc)
    return ImageFont.load_default(size=size)


def load_font(font_path: Optional[Path], size: float) -> FontType:
    """Load ``font_path`` at ``size`` pixels, falling back to Pillow's bundled font."""

    effective_size = max(1, int(round(size)))
    return _load_font_cached(str(font_path) if font_path is not None else None, effective_size)


def _measure_text_width(font: FontType, text: str) -> float:
    if not text:
        return 0.0
    try:
        return float(font.getlength(text))
    except AttributeError:
        left, _, right, _ = font.getbbox(text)
        return float(right - left)


def wrap_text(text: str, font: FontType, max_width: Optional[float]) -> List[str]:
    """Break ``text`` into lines no wider than ``max_width`` where word breaks allow.

    Explicit newlines always start a new line. A single word wider than the box
    keeps its own line rather than being split mid-word.
    """

    lines: List[str] = []
    for paragraph in text.replace("\r", "").split("\n"):
        words = paragraph.split()
        if not words:
            continue
        if max_width is None or max_width <= 0:
            lines.append(" ".join(words))
            continue

        current = words[0]
        for word in words[1:]:
            candidate = f"{current} {word}"
            if _measure_text_width(font, candidate) <= max_width:
                current = candidate
            else:
                lines.append(current)
                current = word
        lines.append(current)
    return lines


def line_height(font_size: float, spacing: float = LINE_SPACING_EM) -> float:
    return font_size * spacing


def _clear_children(element: Element) -> None:
    while element.firstChild is not None:
        element.removeChild(element.firstChild)


def _set_multiline_text(element: Element, lines: Sequence[str], x: float, spacing: float) -> None:
    """Write ``lines`` as ``<tspan>`` rows sharing ``x``, each ``spacing`` px below the last."""

    _clear_children(element)
    document = element.ownerDocument
    for index, line in enumerate(lines):
        tspan = document.createElement("tspan")
        tspan.setAttribute("x", _format_float(x))
        tspan.setAttribute("dy", "0" if index == 0 else _format_float(spacing))
        tspan.appendChild(document.createTextNode(line))
        element.appendChild(tspan)
