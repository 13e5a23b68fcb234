"""Assemble captured rows into one downloadable artifact and hand it to a sink."""
from __future__ import annotations

import logging
import re
import zipfile
from io import BytesIO
from pathlib import Path
from typing import Dict, Mapping, NamedTuple, Optional, Sequence

import fitz  # PyMuPDF
from PIL import Image
from reportlab.lib.pagesizes import landscape, portrait
from reportlab.pdfgen import canvas

from bulk_errors import ExportError
from capture import CaptureResult
from template_model import TemplateField, _normalise_string

logger = logging.getLogger(__name__)

PDF_MEDIA_TYPE = "application/pdf"
ZIP_MEDIA_TYPE = "application/zip"
ARCHIVE_EXTENSIONS = {"png": "png", "jpeg": "jpeg"}
MAX_IDENTIFIER_LENGTH = 60
_NAME_MARKERS = ("name", "اسم")


class Artifact(NamedTuple):
    data: bytes
    filename: str
    media_type: str
    item_count: int


def _sanitize_filename_component(value: str, fallback: str) -> str:
    value = _normalise_string(value)
    if not value:
        value = fallback
    sanitized = re.sub(r"[^\w\-]+", "_", value)
    sanitized = re.sub(r"_+", "_", sanitized).strip("_")
    return sanitized[:MAX_IDENTIFIER_LENGTH] or fallback


def _bulk_stem(template_name: str, row_count: int) -> str:
    return f"{_sanitize_filename_component(template_name, 'template')}_bulk_{row_count}"


def paged_document_filename(template_name: str, row_count: int) -> str:
    return f"{_bulk_stem(template_name, row_count)}.pdf"


def archive_filename(template_name: str, row_count: int) -> str:
    return f"{_bulk_stem(template_name, row_count)}.zip"


def _is_name_like(field: TemplateField) -> bool:
    terms = [field.name.lower(), *(label.lower() for label in field.labels)]
    return any(marker in term for term in terms for marker in _NAME_MARKERS)


def row_identifier(fields: Sequence[TemplateField], row_values: Mapping[str, str], index: int) -> str:
    """Human label for archive entry ``index`` (1-based).

    Uses the first name-like field with a value, otherwise ``item_<index>``.
    """

    fallback = f"item_{index}"
    for field in fields:
        if not _is_name_like(field):
            continue
        value = _normalise_string(row_values.get(field.id, ""))
        if value:
            return _sanitize_filename_component(value, fallback)
    return fallback


def archive_entry_name(index: int, identifier: str, fmt: str) -> str:
    return f"{index:03d}_{identifier}.{ARCHIVE_EXTENSIONS[fmt]}"


class PagedDocumentAssembler:
    """One PDF page per captured row, each page exactly the canvas size."""

    def __init__(self, width: float, height: float) -> None:
        if width <= 0 or height <= 0:
            raise ExportError(f"Invalid page size {width}x{height}")
        self.landscape = width > height
        orient = landscape if self.landscape else portrait
        self.page_size = orient((float(width), float(height)))
        self._buffer = BytesIO()
        self._canvas = canvas.Canvas(self._buffer, pagesize=self.page_size)
        self.page_count = 0

    def add(self, capture: CaptureResult, identifier: str = "") -> None:
        if self.page_count > 0:
            self._canvas.showPage()
        page_width, page_height = self.page_size
        try:
            with Image.open(BytesIO(capture.data)) as image:
                image.load()
                self._canvas.drawInlineImage(image, 0, 0, width=page_width, height=page_height)
        except Exception as exc:
            raise ExportError(f"Could not add page {self.page_count + 1} to the PDF: {exc}") from exc
        self.page_count += 1

    def finalize(self, filename: str) -> Artifact:
        if self.page_count == 0:
            raise ExportError("No pages were captured")
        try:
            self._canvas.save()
            data = self._buffer.getvalue()
            with fitz.open(stream=data, filetype="pdf") as doc:
                written = doc.page_count
        except Exception as exc:
            raise ExportError(f"Could not finalise the PDF: {exc}") from exc

        if written != self.page_count:
            raise ExportError(f"PDF has {written} page(s) but {self.page_count} row(s) were captured")
        logger.info("Assembled %s with %d page(s)", filename, written)
        return Artifact(data, filename, PDF_MEDIA_TYPE, written)


class ImageArchiveAssembler:
    """Deflated ZIP archive with one ``NNN_<identifier>.<ext>`` image per row."""

    def __init__(self, fmt: str) -> None:
        if fmt not in ARCHIVE_EXTENSIONS:
            raise ExportError(f"Unsupported archive image format: {fmt}")
        self.format = fmt
        self._buffer = BytesIO()
        self._archive = zipfile.ZipFile(self._buffer, "w", zipfile.ZIP_DEFLATED)
        self.entries = []

    def add(self, capture: CaptureResult, identifier: str = "") -> str:
        index = len(self.entries) + 1
        name = archive_entry_name(index, identifier or f"item_{index}", self.format)
        try:
            self._archive.writestr(name, capture.data)
        except Exception as exc:
            raise ExportError(f"Could not add {name} to the archive: {exc}") from exc
        self.entries.append(name)
        return name

    def finalize(self, filename: str) -> Artifact:
        if not self.entries:
            raise ExportError("No images were captured")
        try:
            self._archive.close()
        except Exception as exc:
            raise ExportError(f"Could not finalise the archive: {exc}") from exc
        logger.info("Assembled %s with %d image(s)", filename, len(self.entries))
        return Artifact(self._buffer.getvalue(), filename, ZIP_MEDIA_TYPE, len(self.entries))


class OutputSink:
    """Destination for finished artifacts."""

    def save(self, artifact: Artifact, filename: Optional[str] = None) -> str:
        raise NotImplementedError


class FileOutputSink(OutputSink):
    def __init__(self, output_root: Path) -> None:
        self.output_root = Path(output_root)

    def save(self, artifact: Artifact, filename: Optional[str] = None) -> str:
        destination = self.output_root / (filename or artifact.filename)
        try:
            self.output_root.mkdir(parents=True, exist_ok=True)
            destination.write_bytes(artifact.data)
        except OSError as exc:
            raise ExportError(f"Could not save {destination}: {exc}") from exc
        logger.info("Saved %s", destination)
        return str(destination)


class MemoryOutputSink(OutputSink):
    def __init__(self) -> None:
        self.saved: Dict[str, Artifact] = {}

    def save(self, artifact: Artifact, filename: Optional[str] = None) -> str:
        name = filename or artifact.filename
        self.saved[name] = artifact
        return name
