"""
BLAST+ protein search wrapper.

Provides the BlastP wrapper used to align a batch of unannotated protein
records against a preformatted reference database, producing the
comma-separated output consumed by protannot.core.parsers.
"""

from __future__ import annotations

import logging
import os
import tempfile
import threading
from collections.abc import Generator, Iterable
from contextlib import contextmanager
from pathlib import Path

from protannot.core.constants import BLAST_OUTFMT_CSV, DEFAULT_NUM_THREADS
from protannot.external.base import (
    ExternalTool,
    ToolExecutionError,
    ToolLaunchError,
    ToolResult,
    validate_path_safe,
)
from protannot.models.records import SequenceRecord

logger = logging.getLogger(__name__)


@contextmanager
def scoped_blast_files(
    work_dir: Path | None = None,
) -> Generator[tuple[Path, Path], None, None]:
    """Create temporary query and output files, deleting both on exit.

    Cleanup runs on every exit path, including tool failures and
    interruptions.

    Yields:
        Tuple of (query_fasta, output_file) paths.
    """
    fd_in, query_str = tempfile.mkstemp(suffix=".fasta", prefix="blast_input_", dir=work_dir)
    os.close(fd_in)
    fd_out, output_str = tempfile.mkstemp(suffix=".out", prefix="blast_output_", dir=work_dir)
    os.close(fd_out)
    query_fasta, output_file = Path(query_str), Path(output_str)

    try:
        yield query_fasta, output_file
    finally:
        for temp_file in (query_fasta, output_file):
            temp_file.unlink(missing_ok=True)


def write_query_fasta(records: Iterable[SequenceRecord], path: Path) -> int:
    """Write records as two-line FASTA entries (identifier line, sequence line).

    Returns:
        Number of records written.
    """
    count = 0
    with path.open("w") as handle:
        for record in records:
            sequence = "".join(record.sequence.split())
            handle.write(f">{record.query_id}\n{sequence}\n")
            count += 1
    return count


class BlastP(ExternalTool):
    """Wrapper for blastp protein-protein alignment.

    Example:
        >>> blastp = BlastP("/opt/blast/bin/blastp")
        >>> raw = blastp.search(
        ...     batch.records,
        ...     database=Path("uniprot_sprot"),
        ...     evalue=1e-4,
        ...     threads=8,
        ... )
    """

    TOOL_NAME = "blastp"
    INSTALL_HINT = "conda install -c bioconda blast"

    def build_command(
        self,
        *,
        query: Path,
        database: Path,
        output: Path,
        evalue: float,
        threads: int = DEFAULT_NUM_THREADS,
    ) -> list[str]:
        """Build the blastp command.

        The argument order and the output format are fixed; the parser
        depends on the six CSV columns of BLAST_OUTFMT_CSV.

        Args:
            query: Query FASTA file.
            database: BLAST database prefix (not resolved, so names found
                through BLASTDB keep working).
            output: Output file path.
            evalue: E-value threshold.
            threads: Number of threads.

        Returns:
            Command as list of strings.
        """
        query = validate_path_safe(query)
        output = validate_path_safe(output)
        database = validate_path_safe(Path(database), resolve=False)

        exe = str(self.resolve_executable())
        return [
            exe,
            "-db", str(database),
            "-query", str(query),
            "-out", str(output),
            "-evalue", str(float(evalue)),
            "-outfmt", BLAST_OUTFMT_CSV,
            "-num_threads", str(threads),
        ]

    def search(
        self,
        records: Iterable[SequenceRecord],
        *,
        database: Path,
        evalue: float,
        threads: int = DEFAULT_NUM_THREADS,
        timeout: float | None = None,
        cancel_event: threading.Event | None = None,
        work_dir: Path | None = None,
    ) -> str:
        """Align records against the database and return the raw CSV output.

        The query and output files are temporary and removed before this
        method returns or raises.

        Returns:
            Contents of the BLAST output file (empty when nothing matched).

        Raises:
            ToolLaunchError: If blastp cannot be started or its query file
                cannot be written.
            ToolExecutionError: If blastp exits non-zero, writes no output
                file, or the output file cannot be read.
            ToolInterruptedError: On timeout or cancellation.
        """
        try:
            with scoped_blast_files(work_dir) as (query_fasta, output_file):
                n_queries = write_query_fasta(records, query_fasta)
                # mkstemp pre-creates the file; BLAST must produce its own
                output_file.unlink()

                result = self.run_or_raise(
                    query=query_fasta,
                    database=database,
                    output=output_file,
                    evalue=evalue,
                    threads=threads,
                    timeout=timeout,
                    cancel_event=cancel_event,
                )
                logger.debug(
                    "blastp searched %d queries in %.1fs", n_queries, result.elapsed_seconds
                )
                return self._read_output(result, output_file)
        except OSError as e:
            raise ToolLaunchError(
                self.TOOL_NAME,
                reason=f"cannot prepare query files: {e}",
            ) from e

    def _read_output(self, result: ToolResult, output_file: Path) -> str:
        if not output_file.exists():
            raise ToolExecutionError(
                self.TOOL_NAME,
                list(result.command),
                result.return_code,
                result.output or "BLAST exited without writing an output file",
            )
        try:
            return output_file.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            raise ToolExecutionError(
                self.TOOL_NAME,
                list(result.command),
                result.return_code,
                f"cannot read output file {output_file}: {e}",
            ) from e
