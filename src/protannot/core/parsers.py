"""
Parser for the comma-separated BLAST output of the annotation pipeline.

The output file is read line by line. A malformed line never fails the
whole batch: it is reported through a callback (or logged) and skipped.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from pathlib import Path

from protannot.core.exceptions import MalformedResultLineError
from protannot.models.blast import AlignmentHit, AlignmentResult

logger = logging.getLogger(__name__)

MalformedLineHandler = Callable[[MalformedResultLineError], None]


def parse_blast_output(
    raw_output: str | bytes | Iterable[str],
    on_malformed: MalformedLineHandler | None = None,
) -> AlignmentResult:
    """
    Parse BLAST CSV output into hits grouped by query.

    Empty output (BLAST found no hits) yields an empty result. Blank
    lines are ignored.

    Args:
        raw_output: Output file contents, as text, bytes or an iterable
            of lines.
        on_malformed: Called with each MalformedResultLineError; when
            omitted the error is logged as a warning.

    Returns:
        AlignmentResult with queries and hits in encounter order.
    """
    if isinstance(raw_output, bytes):
        raw_output = raw_output.decode("utf-8", errors="replace")
    lines = raw_output.splitlines() if isinstance(raw_output, str) else raw_output

    result = AlignmentResult()
    skipped = 0

    for line_number, line in enumerate(lines, start=1):
        if not line.strip():
            continue
        try:
            hit = AlignmentHit.from_csv_line(line, line_number=line_number)
        except MalformedResultLineError as e:
            skipped += 1
            if on_malformed is not None:
                on_malformed(e)
            else:
                logger.warning("Skipping malformed BLAST line %d: %s", line_number, e.reason)
            continue
        result.add(hit)

    logger.debug(
        "Parsed %d hits for %d queries (%d malformed lines skipped)",
        result.num_hits,
        len(result),
        skipped,
    )
    return result


def parse_blast_file(
    path: Path,
    on_malformed: MalformedLineHandler | None = None,
) -> AlignmentResult:
    """
    Parse a BLAST CSV output file from disk.

    Raises:
        FileNotFoundError: If the file does not exist.
    """
    if not path.exists():
        msg = f"BLAST output file not found: {path}"
        raise FileNotFoundError(msg)

    with path.open(encoding="utf-8", errors="replace") as handle:
        return parse_blast_output(handle, on_malformed=on_malformed)
