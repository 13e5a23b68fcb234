"""Infer which spreadsheet column feeds each template field.

Matching runs per field over the full header list, in priority order:

1. exact: header equals a label (any localisation) or the machine name, ignoring case;
2. fuzzy: header contains the name/label, or is contained by it;
3. alias: header contains, or is contained by, a known variant from ``field_aliases``;
4. otherwise the field stays unmapped.

The first header (in spreadsheet order) that satisfies the highest tier wins.
Two fields may end up on the same header; that is reported, not resolved.
"""
from __future__ import annotations

import logging
from collections import defaultdict
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from field_aliases import FIELD_ALIASES
from sheet_parser import ParsedTable
from template_model import ColumnMapping, TemplateField

logger = logging.getLogger(__name__)

MATCH_EXACT = "exact"
MATCH_FUZZY = "fuzzy"
MATCH_ALIAS = "alias"
MATCH_MANUAL = "manual"


def _normalise(value: str) -> str:
    return " ".join(value.split()).casefold()


def _field_terms(field: TemplateField) -> List[str]:
    terms = []
    for candidate in (*field.labels, field.name):
        normalised = _normalise(candidate)
        if normalised and normalised not in terms:
            terms.append(normalised)
    return terms


def _contains_either_way(header: str, term: str) -> bool:
    return term in header or header in term


def match_exact(field: TemplateField, headers: Sequence[str]) -> Optional[str]:
    terms = _field_terms(field)
    for header in headers:
        if _normalise(header) in terms:
            return header
    return None


def match_fuzzy(field: TemplateField, headers: Sequence[str]) -> Optional[str]:
    terms = _field_terms(field)
    for header in headers:
        normalised = _normalise(header)
        if not normalised:
            continue
        if any(_contains_either_way(normalised, term) for term in terms):
            return header
    return None


def match_alias(
    field: TemplateField,
    headers: Sequence[str],
    aliases: Mapping[str, Sequence[str]] = FIELD_ALIASES,
) -> Optional[str]:
    variants = [_normalise(alias) for alias in aliases.get(field.name.strip().lower(), ())]
    variants = [variant for variant in variants if variant]
    if not variants:
        return None
    for header in headers:
        normalised = _normalise(header)
        if not normalised:
            continue
        if any(_contains_either_way(normalised, variant) for variant in variants):
            return header
    return None


_TIERS: Tuple[Tuple[str, Callable[..., Optional[str]]], ...] = (
    (MATCH_EXACT, match_exact),
    (MATCH_FUZZY, match_fuzzy),
    (MATCH_ALIAS, match_alias),
)


def match_field(
    field: TemplateField,
    headers: Sequence[str],
    aliases: Mapping[str, Sequence[str]] = FIELD_ALIASES,
) -> Tuple[Optional[str], Optional[str]]:
    """Return ``(header, tier)`` for one field, or ``(None, None)`` when nothing matches."""

    for tier, matcher in _TIERS:
        if tier == MATCH_ALIAS:
            header = matcher(field, headers, aliases)
        else:
            header = matcher(field, headers)
        if header is not None:
            return header, tier
    return None, None


def auto_map_columns(
    headers: Sequence[str],
    fields: Sequence[TemplateField],
    aliases: Mapping[str, Sequence[str]] = FIELD_ALIASES,
) -> List[ColumnMapping]:
    """Propose one mapping entry per template field; never raises."""

    mappings = []
    for field in fields:
        header, tier = match_field(field, headers, aliases)
        mappings.append(ColumnMapping(field.id, header, tier))

    unmapped = [mapping.template_field for mapping in mappings if not mapping.is_mapped]
    if unmapped:
        logger.info("Fields left unmapped: %s", ", ".join(unmapped))
    for column, field_ids in shared_columns(mappings).items():
        logger.warning("Column '%s' was matched by several fields: %s", column, ", ".join(field_ids))
    return mappings


def override_mapping(
    mappings: Sequence[ColumnMapping], field_id: str, column: Optional[str]
) -> List[ColumnMapping]:
    """Return a copy of ``mappings`` with the user's choice applied to ``field_id``."""

    updated = []
    for mapping in mappings:
        if mapping.template_field == field_id:
            mapping = ColumnMapping(field_id, column or None, MATCH_MANUAL if column else None)
        updated.append(mapping)
    return updated


def shared_columns(mappings: Sequence[ColumnMapping]) -> Dict[str, List[str]]:
    claimed: Dict[str, List[str]] = defaultdict(list)
    for mapping in mappings:
        if mapping.is_mapped:
            claimed[mapping.excel_column].append(mapping.template_field)  # type: ignore[index]
    return {column: field_ids for column, field_ids in claimed.items() if len(field_ids) > 1}


def mapped_row_values(
    table: ParsedTable, mappings: Sequence[ColumnMapping], index: int
) -> Dict[str, str]:
    """Resolve every mapped field for row ``index``; unmapped or absent columns give ``""``."""

    row = table.rows[index]
    values = {}
    for mapping in mappings:
        value = ""
        if mapping.is_mapped:
            raw = row.get(mapping.excel_column, "")  # type: ignore[arg-type]
            value = "" if raw is None else str(raw).strip()
        values[mapping.template_field] = value
    return values
