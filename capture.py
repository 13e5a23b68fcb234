"""Rasterise rendered surfaces.

Capturing runs in four steps: preload the fonts the surface uses, patch the
inline style of every right-to-left text node, hand the surface to each
capturer in turn until one succeeds, then put the original styles back.

The primary capturer drives the Inkscape command line on the SVG file. The
secondary one redraws the overlays with Pillow; it needs nothing installed
beyond Pillow itself but shapes joined scripts less faithfully.
"""
from __future__ import annotations

import base64
import binascii
import logging
import re
import subprocess
import time
from io import BytesIO
from pathlib import Path
from typing import Callable, Dict, Iterable, List, NamedTuple, Optional, Sequence, Tuple
from urllib.parse import unquote, urlparse

from PIL import Image, ImageColor, ImageDraw, ImageOps, features
from xml.dom.minidom import Document, Element

from bulk_errors import CaptureError
from render_target import DEFAULT_SETTLE_DELAY, AttachedSurface, RenderTarget
from template_renderer import Overlay, RenderedSurface, _rotation_centre
from text_fit_util import DEFAULT_FONT_DIRS, load_font, resolve_font_path

logger = logging.getLogger(__name__)

DEFAULT_SCALE = 2.0
DEFAULT_JPEG_QUALITY = 92
DEFAULT_FONT_WAIT = 0.5
DEFAULT_CAPTURE_TIMEOUT = 60.0
DEFAULT_INKSCAPE_BINARY = "inkscape"

FONT_PRELOAD_SIZE = 48
FONT_PRELOAD_SAMPLE = "أبجد هوز Abc 123"

RASTER_FORMATS = {"png": "PNG", "jpeg": "JPEG"}

# Hebrew through Arabic Extended, plus the Hebrew/Arabic presentation forms.
_RTL_PATTERN = re.compile("[\u0590-\u08ff\ufb1d-\ufdff\ufe70-\ufeff]")

_BIDI_OVERRIDES = (
    ("direction", "rtl"),
    ("unicode-bidi", "bidi-override"),
)
_FONT_FEATURES = '"liga" 1, "calt" 1'


class CaptureOptions(NamedTuple):
    scale: float = DEFAULT_SCALE
    format: str = "png"
    jpeg_quality: int = DEFAULT_JPEG_QUALITY
    settle_delay: float = DEFAULT_SETTLE_DELAY
    font_wait: float = DEFAULT_FONT_WAIT
    font_dirs: Tuple[Path, ...] = DEFAULT_FONT_DIRS

    def pixel_size(self, surface: RenderedSurface) -> Tuple[int, int]:
        width = max(1, int(round(surface.width * self.scale)))
        height = max(1, int(round(surface.height * self.scale)))
        return width, height


class CaptureResult(NamedTuple):
    data: bytes
    width: int
    height: int
    format: str
    backend: str


def _normalise_format(value: str) -> str:
    fmt = value.strip().lower()
    if fmt == "jpg":
        fmt = "jpeg"
    if fmt not in RASTER_FORMATS:
        raise ValueError(f"Unsupported raster format: {value}")
    return fmt


def _encode_image(image: Image.Image, fmt: str, jpeg_quality: int) -> bytes:
    buffer = BytesIO()
    if fmt == "jpeg":
        if image.mode in ("RGBA", "LA", "P"):
            flattened = Image.new("RGB", image.size, "white")
            rgba = image.convert("RGBA")
            flattened.paste(rgba, mask=rgba.getchannel("A"))
            image = flattened
        else:
            image = image.convert("RGB")
        image.save(buffer, format="JPEG", quality=jpeg_quality)
    else:
        image.save(buffer, format="PNG")
    return buffer.getvalue()


# ---------------------------------------------------------------------------
# Font preloading
# ---------------------------------------------------------------------------


class FontPreloader:
    """Warm Pillow's font cache for the families a surface uses.

    Loading stops once ``timeout`` seconds have passed; families not reached by
    then are simply loaded lazily by whichever capturer needs them.
    """

    def __init__(
        self,
        font_dirs: Sequence[Path] = DEFAULT_FONT_DIRS,
        timeout: float = DEFAULT_FONT_WAIT,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.font_dirs = tuple(Path(directory) for directory in font_dirs)
        self.timeout = timeout
        self._clock = clock

    def preload(self, families: Iterable[str]) -> Dict[str, Optional[Path]]:
        started = self._clock()
        resolved: Dict[str, Optional[Path]] = {}
        for family in families:
            if self._clock() - started >= self.timeout:
                logger.debug("Font preload budget of %.2fs spent; continuing without waiting", self.timeout)
                break
            path = resolve_font_path(family, font_dirs=self.font_dirs)
            if path is None:
                logger.debug("No font file found for family %r; using the default font", family)
            font = load_font(path, FONT_PRELOAD_SIZE)
            font.getbbox(FONT_PRELOAD_SAMPLE)
            resolved[family] = path
        return resolved


# ---------------------------------------------------------------------------
# Bidirectional text styling
# ---------------------------------------------------------------------------


class StyleRecord(NamedTuple):
    node: Element
    had_style: bool
    style: str


def contains_rtl(text: str) -> bool:
    return bool(_RTL_PATTERN.search(text))


def text_layout(line: str) -> Dict[str, object]:
    """Extra ``ImageDraw.text`` arguments for shaping ``line``.

    Direction and ligature features need the raqm layout engine; without it
    Pillow draws the line with basic layout.
    """
    if contains_rtl(line) and features.check("raqm"):
        return {"direction": "rtl", "features": ["liga", "calt"]}
    return {}


def _node_text(node: Element) -> str:
    parts = []
    for child in node.childNodes:
        if child.nodeType == child.TEXT_NODE:
            parts.append(child.data)
        elif child.nodeType == child.ELEMENT_NODE:
            parts.append(_node_text(child))
    return "".join(parts)


def _parse_style(style: str) -> List[Tuple[str, str]]:
    declarations = []
    for chunk in style.split(";"):
        if ":" not in chunk:
            continue
        name, value = chunk.split(":", 1)
        name = name.strip().lower()
        if name:
            declarations.append((name, value.strip()))
    return declarations


def _format_style(declarations: Sequence[Tuple[str, str]]) -> str:
    return ";".join(f"{name}:{value}" for name, value in declarations)


def _inherited_font_family(node: Element) -> str:
    current = node
    while current is not None and current.nodeType == current.ELEMENT_NODE:
        for name, value in _parse_style(current.getAttribute("style")):
            if name == "font-family" and value:
                return value
        family = current.getAttribute("font-family")
        if family:
            return family
        current = current.parentNode
    return ""


def inject_bidi_styles(document: Document) -> List[StyleRecord]:
    """Force right-to-left layout on text nodes holding RTL characters.

    Returns the original inline styles so :func:`restore_styles` can undo the
    change.
    """

    records: List[StyleRecord] = []
    nodes = list(document.getElementsByTagName("text")) + list(document.getElementsByTagName("tspan"))
    for node in nodes:
        if not contains_rtl(_node_text(node)):
            continue
        had_style = node.hasAttribute("style")
        original = node.getAttribute("style")
        records.append(StyleRecord(node, had_style, original))

        declarations = [item for item in _parse_style(original) if item[0] not in ("direction", "unicode-bidi", "font-feature-settings")]
        names = {name for name, _ in declarations}
        if "font-family" not in names:
            family = _inherited_font_family(node)
            if family:
                declarations.append(("font-family", family))
        declarations.extend(_BIDI_OVERRIDES)
        declarations.append(("font-feature-settings", _FONT_FEATURES))
        node.setAttribute("style", _format_style(declarations))
    return records


def restore_styles(records: Sequence[StyleRecord]) -> None:
    for record in reversed(records):
        if record.had_style:
            record.node.setAttribute("style", record.style)
        elif record.node.hasAttribute("style"):
            record.node.removeAttribute("style")


# ---------------------------------------------------------------------------
# Capturers
# ---------------------------------------------------------------------------


class InkscapeCapturer:
    """Export the attached SVG through the Inkscape command line."""

    name = "inkscape"

    def __init__(self, binary: str = DEFAULT_INKSCAPE_BINARY, timeout: float = DEFAULT_CAPTURE_TIMEOUT) -> None:
        self.binary = binary
        self.timeout = timeout

    def _command(self, infile: Path, outfile: Path, width: int, height: int) -> List[str]:
        return [
            self.binary,
            str(infile),
            "--export-type=png",
            f"--export-filename={outfile}",
            f"--export-width={width}",
            f"--export-height={height}",
            "--export-area-page",
        ]

    def capture(self, attached: AttachedSurface, options: CaptureOptions) -> CaptureResult:
        fmt = _normalise_format(options.format)
        width, height = options.pixel_size(attached.surface)
        outfile = attached.svg_path.with_suffix(".png")
        command = self._command(attached.svg_path, outfile, width, height)

        completed = subprocess.run(command, timeout=self.timeout, capture_output=True)
        if completed.returncode != 0:
            raise subprocess.CalledProcessError(
                completed.returncode, command, output=completed.stdout, stderr=completed.stderr
            )
        if not outfile.exists():
            raise FileNotFoundError(f"Inkscape produced no output at {outfile}")

        with Image.open(outfile) as exported:
            exported.load()
            if fmt == "png" and exported.size == (width, height):
                data = outfile.read_bytes()
            else:
                if exported.size != (width, height):
                    exported = exported.resize((width, height), Image.LANCZOS)
                data = _encode_image(exported, fmt, options.jpeg_quality)
        return CaptureResult(data, width, height, fmt, self.name)


def _load_image_source(source: str) -> Image.Image:
    if source.startswith("data:"):
        header, _, payload = source.partition(",")
        try:
            raw = base64.b64decode(payload) if ";base64" in header else unquote(payload).encode("latin-1")
        except (binascii.Error, ValueError) as exc:
            raise ValueError("Malformed data URI") from exc
        image = Image.open(BytesIO(raw))
    else:
        parsed = urlparse(source)
        if parsed.scheme == "file":
            path = Path(unquote(parsed.path))
        elif len(parsed.scheme) <= 1:
            path = Path(source)
        else:
            raise ValueError(f"Cannot load remote image {source} without a network fetch")
        image = Image.open(path)
    image.load()
    return image


def _parse_color(value: str) -> Tuple[int, int, int, int]:
    try:
        rgb = ImageColor.getrgb(value or "#000000")
    except ValueError:
        logger.debug("Unrecognised colour %r; drawing in black", value)
        return (0, 0, 0, 255)
    if len(rgb) == 3:
        return rgb + (255,)
    return rgb


_PIL_ANCHORS = {"start": "ls", "middle": "ms", "end": "rs"}


class PillowCapturer:
    """Redraw the surface from its overlay list into an off-screen bitmap."""

    name = "pillow"

    def _draw_background(self, canvas: Image.Image, surface: RenderedSurface) -> None:
        if not surface.background_url:
            return
        with _load_image_source(surface.background_url) as background:
            layer = background.convert("RGBA").resize(canvas.size, Image.LANCZOS)
        canvas.alpha_composite(layer)

    def _draw_text(self, layer: Image.Image, overlay: Overlay, scale: float) -> None:
        draw = ImageDraw.Draw(layer)
        font = load_font(Path(overlay.font_path) if overlay.font_path else None, overlay.font_size * scale)
        anchor = _PIL_ANCHORS.get(overlay.text_anchor, "ms")
        fill = _parse_color(overlay.color)
        for index, line in enumerate(overlay.lines):
            baseline = (overlay.y + index * overlay.line_spacing) * scale
            draw.text((overlay.x * scale, baseline), line, font=font, fill=fill, anchor=anchor, **text_layout(line))

    def _draw_image(self, layer: Image.Image, overlay: Overlay, scale: float) -> None:
        box_width = max(1, int(round(overlay.width * scale)))
        box_height = max(1, int(round((overlay.height or overlay.width) * scale)))
        with _load_image_source(overlay.value) as source:
            fitted = ImageOps.contain(source.convert("RGBA"), (box_width, box_height), Image.LANCZOS)
        left = int(round(overlay.x * scale)) + (box_width - fitted.width) // 2
        top = int(round(overlay.y * scale)) + (box_height - fitted.height) // 2
        layer.alpha_composite(fitted, (left, top))

    def _draw_overlay(self, canvas: Image.Image, overlay: Overlay, scale: float) -> None:
        target = canvas if not overlay.rotation else Image.new("RGBA", canvas.size, (0, 0, 0, 0))
        if overlay.kind == "image":
            self._draw_image(target, overlay, scale)
        else:
            self._draw_text(target, overlay, scale)
        if target is canvas:
            return

        # SVG rotates clockwise for positive angles, Pillow counter-clockwise.
        centre_x, centre_y = _rotation_centre(overlay)
        rotated = target.rotate(
            -overlay.rotation,
            resample=Image.BICUBIC,
            center=(centre_x * scale, centre_y * scale),
        )
        canvas.alpha_composite(rotated)

    def capture(self, attached: AttachedSurface, options: CaptureOptions) -> CaptureResult:
        fmt = _normalise_format(options.format)
        surface = attached.surface
        width, height = options.pixel_size(surface)
        scale_x = width / float(surface.width)

        canvas = Image.new("RGBA", (width, height), (255, 255, 255, 255))
        self._draw_background(canvas, surface)
        for overlay in surface.overlays:
            self._draw_overlay(canvas, overlay, scale_x)

        data = _encode_image(canvas, fmt, options.jpeg_quality)
        return CaptureResult(data, width, height, fmt, self.name)


def default_capturers(
    inkscape_binary: str = DEFAULT_INKSCAPE_BINARY,
    timeout: float = DEFAULT_CAPTURE_TIMEOUT,
) -> List[object]:
    return [InkscapeCapturer(inkscape_binary, timeout), PillowCapturer()]


def capture_surface(
    surface: RenderedSurface,
    target: RenderTarget,
    capturers: Sequence[object],
    options: CaptureOptions = CaptureOptions(),
    *,
    row_index: Optional[int] = None,
    preloader: Optional[FontPreloader] = None,
) -> CaptureResult:
    """Attach ``surface`` to ``target`` and return the first successful capture.

    Raises:
        CaptureError: every capturer failed; ``causes`` holds their exceptions in order.
            Also raised when the surface cannot be written to the render target.
    """

    if not capturers:
        raise CaptureError("No capture backend is configured", row_index=row_index)

    if preloader is None:
        preloader = FontPreloader(options.font_dirs, options.font_wait)
    preloader.preload(surface.font_families)

    causes: List[BaseException] = []
    records = inject_bidi_styles(surface.document)
    try:
        with target.attached(surface, settle_delay=options.settle_delay) as attached:
            for capturer in capturers:
                name = getattr(capturer, "name", type(capturer).__name__)
                try:
                    result = capturer.capture(attached, options)
                except Exception as exc:
                    logger.warning("Capture backend %s failed: %s", name, exc)
                    causes.append(exc)
                    continue
                if causes:
                    logger.info("Captured with fallback backend %s", name)
                return result
    except OSError as exc:
        where = f" for row {row_index + 1}" if row_index is not None else ""
        raise CaptureError(
            f"Could not prepare the document{where}: {exc}", causes=[*causes, exc], row_index=row_index
        ) from exc
    finally:
        restore_styles(records)

    where = f" for row {row_index + 1}" if row_index is not None else ""
    error = CaptureError(f"Could not capture the document{where}: {causes[-1]}", causes=causes, row_index=row_index)
    raise error from causes[-1]
