"""Exceptions raised by the bulk document generation pipeline."""
from __future__ import annotations

from typing import Optional, Sequence


class BulkGenerationError(Exception):
    """Base error for every failure surfaced to the user during a bulk run."""


class ParseError(BulkGenerationError):
    """Raised when an uploaded spreadsheet cannot be turned into a table."""


class TemplateNotUsable(BulkGenerationError):
    """Raised when a template has no canvas or no fields to fill."""


class MappingIncomplete(BulkGenerationError):
    """Raised when no template field is mapped to a data column."""


class CaptureError(BulkGenerationError):
    """Raised when every rendering backend failed to rasterize a surface."""

    def __init__(
        self,
        message: str,
        *,
        causes: Sequence[BaseException] = (),
        row_index: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.causes = tuple(causes)
        self.row_index = row_index

    @property
    def cause(self) -> Optional[BaseException]:
        return self.causes[-1] if self.causes else None


class ExportError(BulkGenerationError):
    """Raised when the final document or archive cannot be assembled."""


class ExportCancelled(BulkGenerationError):
    """Raised when a running batch is cancelled between rows."""
