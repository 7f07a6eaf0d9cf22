"""
Shared CLI utilities for protannot commands.

Provides console handling, logging setup and progress displays used
across CLI modules.
"""

from __future__ import annotations

import logging
from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

from rich.console import Console
from rich.logging import RichHandler
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)

from protannot.core.constants import STAGE_ALIGNING, STAGE_PERSISTING
from protannot.models.records import ProgressEvent


def configure_logging(console: Console, verbose: bool = False, quiet: bool = False) -> None:
    """Route library logging through a RichHandler on the given console.

    Verbose mode logs at DEBUG; quiet mode only shows errors.
    """
    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.ERROR
    else:
        level = logging.WARNING

    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=verbose, markup=False)],
        force=True,
    )


@contextmanager
def spinner_progress(
    description: str,
    console: Console | None = None,
    quiet: bool = False,
) -> Generator[Progress, None, None]:
    """Context manager for spinner-style progress display.

    The spinner is suppressed when quiet mode is enabled.

    Example:
        >>> with spinner_progress("Importing taxonomy...", console, quiet):
        ...     import_taxonomy(session, rows)
    """
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        TimeElapsedColumn(),
        console=console,
        disable=quiet,
    ) as progress:
        progress.add_task(description=description, total=None)
        yield progress


class PipelineProgress:
    """Renders coordinator ProgressEvents as a rich progress bar.

    The bar counts annotated records; the description shows the batch
    currently being aligned.
    """

    def __init__(self, progress: Progress, total_records: int | None = None):
        self._progress = progress
        self._task = progress.add_task("Loading records...", total=total_records)

    def __call__(self, event: ProgressEvent) -> None:
        if event.stage == STAGE_ALIGNING:
            self._progress.update(self._task, description=event.message)
        elif event.stage == STAGE_PERSISTING:
            self._progress.update(self._task, completed=event.current, total=event.total)


@contextmanager
def pipeline_progress(
    console: Console | None = None,
    quiet: bool = False,
) -> Generator[PipelineProgress, None, None]:
    """Progress bar for a pipeline run, yielding the on_progress callback."""
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TimeElapsedColumn(),
        console=console,
        disable=quiet,
        refresh_per_second=2,
    ) as progress:
        yield PipelineProgress(progress)


class QuietConsole:
    """Console wrapper that suppresses output in quiet mode.

    Example:
        >>> qc = QuietConsole(Console(), quiet=True)
        >>> qc.print("This won't be shown")  # Suppressed
    """

    def __init__(self, console: Console, quiet: bool = False):
        self._console = console
        self._quiet = quiet

    @property
    def console(self) -> Console:
        """The wrapped Console, for output that ignores quiet mode."""
        return self._console

    def print(self, *args: Any, **kwargs: Any) -> None:
        """Print to console unless quiet mode is enabled."""
        if not self._quiet:
            self._console.print(*args, **kwargs)

    def __getattr__(self, name: str) -> Any:
        return getattr(self._console, name)
