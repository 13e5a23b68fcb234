"""Template lookup over a directory of JSON template descriptions.

Each template lives in ``<template_root>/<template_id>.json`` or
``<template_root>/<template_id>/template.json`` and looks like::

    {
        "id": "certificate-01",
        "name": "Appreciation certificate",
        "canvas": {"background_url": "background.png", "canvas_width": 1123,
                   "canvas_height": 794, "elements": [...]},
        "form": {"fields": [...]}
    }

Relative background paths are resolved against the folder holding the JSON file.
"""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import List, Mapping, Optional

from bulk_errors import TemplateNotUsable
from template_model import TemplateBundle, TemplateCanvas, TemplateField, _normalise_string

logger = logging.getLogger(__name__)

DEFAULT_TEMPLATE_ROOT = Path("templates")
TEMPLATE_FILE_NAME = "template.json"


def _resolve_background(url: str, base_dir: Path) -> str:
    if not url:
        return url
    if url.startswith(("data:", "http://", "https://", "file://")):
        return url
    candidate = Path(url)
    if not candidate.is_absolute():
        candidate = (base_dir / candidate).resolve()
    return str(candidate)


def bundle_from_dict(payload: Mapping[str, object], *, base_dir: Optional[Path] = None) -> TemplateBundle:
    canvas_payload = payload.get("canvas")
    canvas: Optional[TemplateCanvas] = None
    if isinstance(canvas_payload, Mapping):
        canvas = TemplateCanvas.from_dict(canvas_payload)
        if base_dir is not None:
            canvas = canvas._replace(background_url=_resolve_background(canvas.background_url, base_dir))

    form = payload.get("form")
    raw_fields = form.get("fields") if isinstance(form, Mapping) else payload.get("fields")
    fields = tuple(
        TemplateField.from_dict(item)
        for item in (raw_fields or ())  # type: ignore[union-attr]
        if isinstance(item, Mapping)
    )

    template_id = _normalise_string(payload.get("id"))
    return TemplateBundle(
        id=template_id,
        name=_normalise_string(payload.get("name"), template_id or "template"),
        canvas=canvas,
        fields=fields,
    )


def load_template_file(path: Path) -> TemplateBundle:
    path = Path(path)
    try:
        with path.open(encoding="utf-8") as handle:
            payload = json.load(handle)
    except (OSError, ValueError) as exc:
        raise TemplateNotUsable(f"Could not read template {path}: {exc}") from exc
    if not isinstance(payload, Mapping):
        raise TemplateNotUsable(f"Template file is not a JSON object: {path}")
    bundle = bundle_from_dict(payload, base_dir=path.parent)
    if not bundle.id:
        bundle = bundle._replace(id=path.stem if path.name != TEMPLATE_FILE_NAME else path.parent.name)
    return bundle


class TemplateStore:
    """Read-only access to the templates stored under ``template_root``."""

    def __init__(self, template_root: Path = DEFAULT_TEMPLATE_ROOT) -> None:
        self.template_root = Path(template_root)

    def _find_template_file(self, template_id: str) -> Optional[Path]:
        for candidate in (
            self.template_root / f"{template_id}.json",
            self.template_root / template_id / TEMPLATE_FILE_NAME,
        ):
            if candidate.is_file():
                return candidate
        return None

    def fetch(self, template_id: str) -> TemplateBundle:
        path = self._find_template_file(template_id)
        if path is None:
            raise TemplateNotUsable(f"Template not found: {template_id}")
        return load_template_file(path)

    def fetch_for_bulk(self, template_id: str) -> TemplateBundle:
        bundle = self.fetch(template_id)
        if not bundle.is_bulk_usable:
            raise TemplateNotUsable(
                f"Template '{bundle.name}' has no canvas or no fields and cannot be used for bulk generation"
            )
        return bundle

    def usable_templates(self) -> List[TemplateBundle]:
        """Return every stored template that can drive a bulk run, sorted by name."""

        if not self.template_root.is_dir():
            return []

        candidates = sorted(self.template_root.glob("*.json"))
        candidates.extend(sorted(self.template_root.glob(f"*/{TEMPLATE_FILE_NAME}")))

        bundles = []
        for path in candidates:
            try:
                bundle = load_template_file(path)
            except TemplateNotUsable as exc:
                logger.warning("Skipping unreadable template %s: %s", path, exc)
                continue
            if not bundle.is_bulk_usable:
                logger.info("Template %s is not usable for bulk generation", bundle.id)
                continue
            bundles.append(bundle)
        bundles.sort(key=lambda bundle: bundle.name.lower())
        return bundles
