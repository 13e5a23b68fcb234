"""Scratch compositing area shared by every capture in a batch.

Only one :class:`RenderTarget` can be held at a time in a process. Each rendered
surface is written into the target's working directory for the duration of its
own capture and removed again afterwards, whether or not the capture succeeded.
"""
from __future__ import annotations

import logging
import shutil
import tempfile
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, NamedTuple, Optional

from template_renderer import RenderedSurface

logger = logging.getLogger(__name__)

DEFAULT_SETTLE_DELAY = 0.1


class RenderTargetBusy(RuntimeError):
    """Raised when a second render target is requested while one is held."""


class AttachedSurface(NamedTuple):
    surface: RenderedSurface
    svg_path: Path
    working_dir: Path

    def sync(self) -> None:
        """Rewrite the SVG file from the surface's current DOM."""

        self.svg_path.write_text(self.surface.to_svg(), encoding="utf-8")


class RenderTarget:
    _lock = threading.Lock()

    def __init__(self, working_dir: Optional[Path] = None) -> None:
        self._requested_dir = Path(working_dir) if working_dir is not None else None
        self._working_dir: Optional[Path] = None
        self._owns_directory = False
        self._attached: Optional[AttachedSurface] = None
        self._sequence = 0

    @property
    def working_dir(self) -> Path:
        if self._working_dir is None:
            raise RuntimeError("Render target has not been acquired")
        return self._working_dir

    @property
    def is_held(self) -> bool:
        return self._working_dir is not None

    @property
    def attached_surface(self) -> Optional[AttachedSurface]:
        return self._attached

    def acquire(self) -> "RenderTarget":
        if not RenderTarget._lock.acquire(blocking=False):
            raise RenderTargetBusy("Another render target is already in use")
        try:
            if self._requested_dir is None:
                self._working_dir = Path(tempfile.mkdtemp(prefix="bulk_render_"))
                self._owns_directory = True
            else:
                if self._requested_dir.exists():
                    shutil.rmtree(self._requested_dir)
                self._requested_dir.mkdir(parents=True)
                self._working_dir = self._requested_dir
                self._owns_directory = False
        except OSError:
            RenderTarget._lock.release()
            raise
        logger.debug("Render target acquired at %s", self._working_dir)
        return self

    def release(self) -> None:
        if self._working_dir is None:
            return
        try:
            if self._owns_directory:
                shutil.rmtree(self._working_dir, ignore_errors=True)
            logger.debug("Render target released from %s", self._working_dir)
        finally:
            self._working_dir = None
            self._attached = None
            RenderTarget._lock.release()

    def __enter__(self) -> "RenderTarget":
        return self.acquire()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

    @contextmanager
    def attached(
        self, surface: RenderedSurface, settle_delay: float = DEFAULT_SETTLE_DELAY
    ) -> Iterator[AttachedSurface]:
        """Materialise ``surface`` in the working directory until the block exits."""

        if self._attached is not None:
            raise RenderTargetBusy("A surface is already attached to this render target")

        self._sequence += 1
        svg_path = self.working_dir / f"surface_{self._sequence:04d}.svg"
        attached = AttachedSurface(surface, svg_path, self.working_dir)
        self._attached = attached
        try:
            attached.sync()
            if settle_delay > 0:
                time.sleep(settle_delay)
            yield attached
        finally:
            self._attached = None
            for leftover in self.working_dir.glob(f"{svg_path.stem}.*"):
                try:
                    leftover.unlink()
                except OSError as exc:
                    logger.warning("Could not remove %s: %s", leftover, exc)
