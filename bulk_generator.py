"""Generate one document per spreadsheet row from a certificate template.

A run parses nothing itself: it takes a template bundle, a parsed table and the
confirmed column mappings, then renders, captures and assembles every row in
order into a single PDF or image archive.
"""
from __future__ import annotations

import argparse
import logging
import sys
import threading
from pathlib import Path
from typing import Callable, List, NamedTuple, Optional, Sequence

from bulk_errors import BulkGenerationError, ExportCancelled, ExportError, MappingIncomplete, TemplateNotUsable
from capture import (
    DEFAULT_CAPTURE_TIMEOUT,
    DEFAULT_FONT_WAIT,
    DEFAULT_INKSCAPE_BINARY,
    DEFAULT_SCALE,
    CaptureOptions,
    FontPreloader,
    capture_surface,
    default_capturers,
)
from column_mapper import auto_map_columns, mapped_row_values, override_mapping
from export_assembly import (
    FileOutputSink,
    ImageArchiveAssembler,
    OutputSink,
    PagedDocumentAssembler,
    archive_filename,
    paged_document_filename,
    row_identifier,
)
from render_target import DEFAULT_SETTLE_DELAY, RenderTarget, RenderTargetBusy
from sheet_parser import ParsedTable, analyze_columns, parse_file, write_sample_file
from template_model import ColumnMapping, TemplateBundle, has_mapped_column
from template_renderer import render_surface
from template_store import load_template_file
from text_fit_util import DEFAULT_FONT_DIRS

logger = logging.getLogger(__name__)

DEFAULT_OUTPUT_ROOT = Path("output")

FORMAT_PDF = "pdf"
FORMAT_PNG = "png"
FORMAT_JPEG = "jpeg"
EXPORT_FORMATS = (FORMAT_PDF, FORMAT_PNG, FORMAT_JPEG)
_FORMAT_ALIASES = {
    "pdf": FORMAT_PDF,
    "paged_document": FORMAT_PDF,
    "png": FORMAT_PNG,
    "archive_png": FORMAT_PNG,
    "jpeg": FORMAT_JPEG,
    "jpg": FORMAT_JPEG,
    "archive_jpeg": FORMAT_JPEG,
}

ProgressCallback = Callable[[int, int], None]
NotifyCallback = Callable[[str], None]


class CancelToken:
    """Flag checked by a running batch before each row."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, completed: int, total: int) -> None:
        if self._event.is_set():
            raise ExportCancelled(f"Generation cancelled after {completed} of {total} row(s)")


class ExportOutcome(NamedTuple):
    success: bool
    message: str
    filename: Optional[str] = None
    location: Optional[str] = None
    rows: int = 0
    error: Optional[BulkGenerationError] = None


def normalise_export_format(value: str) -> str:
    fmt = _FORMAT_ALIASES.get(str(value).strip().lower())
    if fmt is None:
        raise ExportError(f"Unsupported export format: {value}. Choose one of {', '.join(EXPORT_FORMATS)}.")
    return fmt


def _check_ready(bundle: TemplateBundle, table: ParsedTable, mappings: Sequence[ColumnMapping]) -> None:
    if not bundle.is_bulk_usable:
        raise TemplateNotUsable(f"Template '{bundle.name}' cannot be used for bulk generation")
    if not has_mapped_column(mappings):
        raise MappingIncomplete("Map at least one column to a template field before generating")
    if table.total_rows == 0:
        raise ExportError("The spreadsheet has no rows to generate")


def generate_bulk(
    bundle: TemplateBundle,
    table: ParsedTable,
    mappings: Sequence[ColumnMapping],
    *,
    export_format: str = FORMAT_PDF,
    sink: OutputSink,
    capturers: Optional[Sequence[object]] = None,
    options: Optional[CaptureOptions] = None,
    progress: Optional[ProgressCallback] = None,
    cancel_token: Optional[CancelToken] = None,
    render_target: Optional[RenderTarget] = None,
) -> ExportOutcome:
    """Run one batch and save its artifact through ``sink``.

    Rows are processed strictly in order and one at a time. Any failure aborts the
    whole batch; nothing is saved unless every row was captured.

    Raises:
        TemplateNotUsable, MappingIncomplete: before any row is rendered.
        CaptureError: every capture backend failed for a row.
        ExportCancelled: ``cancel_token`` was cancelled between rows.
        ExportError: the artifact could not be assembled or saved.
    """

    _check_ready(bundle, table, mappings)
    fmt = normalise_export_format(export_format)
    canvas = bundle.canvas
    total = table.total_rows

    if options is None:
        options = CaptureOptions()
    options = options._replace(format=FORMAT_PNG if fmt == FORMAT_PDF else fmt)
    if capturers is None:
        capturers = default_capturers()

    if fmt == FORMAT_PDF:
        assembler = PagedDocumentAssembler(canvas.canvas_width, canvas.canvas_height)
        filename = paged_document_filename(bundle.name, total)
    else:
        assembler = ImageArchiveAssembler(fmt)
        filename = archive_filename(bundle.name, total)

    target = render_target if render_target is not None else RenderTarget()
    owns_target = not target.is_held
    if owns_target:
        try:
            target.acquire()
        except RenderTargetBusy as exc:
            raise ExportError("Another bulk generation is already running") from exc

    preloader = FontPreloader(options.font_dirs, options.font_wait)
    logger.info("Generating %d %s document(s) from template '%s'", total, fmt, bundle.name)
    try:
        for index in range(total):
            if cancel_token is not None:
                cancel_token.raise_if_cancelled(index, total)

            row_values = mapped_row_values(table, mappings, index)
            surface = render_surface(canvas, bundle.fields, row_values, font_dirs=options.font_dirs)
            result = capture_surface(
                surface, target, capturers, options, row_index=index, preloader=preloader
            )
            assembler.add(result, row_identifier(bundle.fields, row_values, index + 1))
            logger.debug("Row %d/%d captured with %s", index + 1, total, result.backend)

            if progress is not None:
                progress(index + 1, total)
    finally:
        if owns_target:
            target.release()

    artifact = assembler.finalize(filename)
    location = sink.save(artifact, filename)
    return ExportOutcome(
        success=True,
        message=f"Generated {artifact.item_count} document(s): {filename}",
        filename=filename,
        location=location,
        rows=artifact.item_count,
    )


def run_bulk_generation(
    bundle: TemplateBundle,
    table: ParsedTable,
    mappings: Sequence[ColumnMapping],
    *,
    notify: Optional[NotifyCallback] = None,
    **kwargs,
) -> ExportOutcome:
    """Call :func:`generate_bulk` and turn any pipeline failure into one message.

    ``notify`` receives exactly one message per run, success or failure.
    """

    try:
        outcome = generate_bulk(bundle, table, mappings, **kwargs)
    except BulkGenerationError as exc:
        logger.error("Bulk generation failed: %s", exc)
        outcome = ExportOutcome(success=False, message=str(exc), error=exc)
    except Exception as exc:
        logger.exception("Bulk generation stopped unexpectedly")
        error = ExportError(f"Bulk generation stopped unexpectedly: {exc}")
        error.__cause__ = exc
        outcome = ExportOutcome(success=False, message=str(error), error=error)
    if notify is not None:
        notify(outcome.message)
    return outcome


def _apply_manual_mappings(
    bundle: TemplateBundle, mappings: List[ColumnMapping], overrides: Sequence[str]
) -> List[ColumnMapping]:
    by_name = {field.name: field.id for field in bundle.fields}
    for entry in overrides:
        if "=" not in entry:
            raise MappingIncomplete(f"Invalid mapping '{entry}', expected FIELD=COLUMN")
        field_key, column = (part.strip() for part in entry.split("=", 1))
        field_id = field_key if field_key in bundle.field_map() else by_name.get(field_key)
        if field_id is None:
            raise MappingIncomplete(f"Template '{bundle.name}' has no field named '{field_key}'")
        mappings = override_mapping(mappings, field_id, column)
    return mappings


def _parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Generate one document per spreadsheet row from a template.")
    parser.add_argument("template", type=Path, help="Path to the template JSON file")
    parser.add_argument("data", type=Path, nargs="?", help="Spreadsheet (.xlsx, .xls) or CSV file with one row per document")
    parser.add_argument("--format", dest="export_format", choices=EXPORT_FORMATS, default=FORMAT_PDF, help="Output as one PDF or as a ZIP of images")
    parser.add_argument(
        "--output-root",
        type=Path,
        default=DEFAULT_OUTPUT_ROOT,
        help="Directory where the generated file will be written",
    )
    parser.add_argument("--sheet", default=None, help="Worksheet name to read (defaults to the first sheet)")
    parser.add_argument(
        "--map",
        dest="mappings",
        action="append",
        default=[],
        metavar="FIELD=COLUMN",
        help="Override the automatic column match for one field",
    )
    parser.add_argument("--scale", type=float, default=DEFAULT_SCALE, help="Pixel multiplier applied to the canvas size")
    parser.add_argument(
        "--font-dir",
        dest="font_dirs",
        type=Path,
        action="append",
        default=[],
        help="Additional directory searched for template fonts",
    )
    parser.add_argument("--inkscape", default=DEFAULT_INKSCAPE_BINARY, help="Inkscape executable used for rendering")
    parser.add_argument("--timeout", type=float, default=DEFAULT_CAPTURE_TIMEOUT, help="Seconds allowed for each Inkscape export")
    parser.add_argument("--settle-delay", type=float, default=DEFAULT_SETTLE_DELAY, help="Pause in seconds before each capture")
    parser.add_argument("--font-wait", type=float, default=DEFAULT_FONT_WAIT, help="Seconds allowed for font preloading")
    parser.add_argument(
        "--sample-file",
        type=Path,
        default=None,
        help="Write a sample .xlsx or .csv for the template to this path and exit",
    )
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s - %(message)s")

    try:
        bundle = load_template_file(args.template)
        if args.sample_file is not None:
            write_sample_file(bundle.fields, args.sample_file)
            print(f"Sample file written to {args.sample_file}")
            return 0
        if args.data is None:
            print("A data file is required unless --sample-file is given", file=sys.stderr)
            return 2

        table = parse_file(args.data, sheet=args.sheet)
        mappings = auto_map_columns(table.headers, bundle.fields)
        mappings = _apply_manual_mappings(bundle, mappings, args.mappings)
    except BulkGenerationError as exc:
        print(exc, file=sys.stderr)
        return 1

    for info in analyze_columns(table):
        logger.info("Column '%s' looks like %s (%d empty cell(s))", info.name, info.type, info.empty_count)
    fields = bundle.field_map()
    for mapping in mappings:
        field = fields.get(mapping.template_field)
        label = field.display_label if field is not None else mapping.template_field
        logger.info("%s -> %s", label, mapping.excel_column or "(unmapped)")

    options = CaptureOptions(
        scale=args.scale,
        settle_delay=args.settle_delay,
        font_wait=args.font_wait,
        font_dirs=tuple(args.font_dirs) + DEFAULT_FONT_DIRS,
    )

    def _report(current: int, total: int) -> None:
        logger.info("Progress: %d/%d (%d%%)", current, total, current * 100 // total)

    outcome = run_bulk_generation(
        bundle,
        table,
        mappings,
        export_format=args.export_format,
        sink=FileOutputSink(args.output_root),
        capturers=default_capturers(args.inkscape, args.timeout),
        options=options,
        progress=_report,
        notify=print,
    )
    return 0 if outcome.success else 1


if __name__ == "__main__":
    raise SystemExit(main())
