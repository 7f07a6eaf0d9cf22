"""
Custom exceptions with actionable guidance.

Provides specific error types for the failure scenarios of the annotation
pipeline, each with helpful suggestions for resolution. Line-, hit- and
record-level errors are recovered by the pipeline and accumulated as
failures; batch- and run-level errors halt the run.
"""

from __future__ import annotations


class ProtannotError(Exception):
    """Base exception for protannot errors."""

    def __init__(self, message: str, suggestion: str | None = None):
        self.message = message
        self.suggestion = suggestion
        super().__init__(self.full_message)

    @property
    def full_message(self) -> str:
        if self.suggestion:
            return f"{self.message}\n\nSuggestion: {self.suggestion}"
        return self.message


class ConfigurationError(ProtannotError):
    """Raised when configuration is invalid."""


class InvalidBatchSizeError(ConfigurationError):
    """Raised when a batch size is not a positive integer."""

    def __init__(self, batch_size: int):
        super().__init__(
            message=f"Batch size must be >= 1, got {batch_size}",
            suggestion="Set --batch-size (or batching.batch_size) to a positive integer.",
        )
        self.batch_size = batch_size


class MalformedResultLineError(ProtannotError):
    """Raised when a line of BLAST CSV output cannot be parsed."""

    def __init__(self, line: str, reason: str, line_number: int | None = None):
        where = f" at line {line_number}" if line_number is not None else ""
        display = line if len(line) <= 200 else line[:200] + "..."
        super().__init__(
            message=f"Malformed BLAST result line{where}: {reason}\n  {display}",
            suggestion=(
                "BLAST output must use -outfmt "
                "\"10 qacc sacc bitscore evalue pident stitle\" "
                "(6 comma-separated fields, subject as db|accession|name)."
            ),
        )
        self.line = line
        self.reason = reason
        self.line_number = line_number


class UnresolvedTaxonomyError(ProtannotError):
    """Raised when a hit's subject accession has no known taxon."""

    def __init__(self, accession: str, reason: str = "no taxon mapped to accession"):
        super().__init__(
            message=f"Cannot resolve taxonomy for {accession}: {reason}",
            suggestion=(
                "Import the reference entries for this database with "
                "'protannot store import-references', or enable --uniprot-fallback."
            ),
        )
        self.accession = accession
        self.reason = reason


class StoreError(ProtannotError):
    """Base class for record store errors."""


class RecordPersistError(StoreError):
    """Raised when a single record cannot be written to the store."""

    def __init__(self, record_id: int | str, cause: str):
        super().__init__(
            message=f"Failed to persist annotation for record {record_id}: {cause}",
            suggestion="Check the record for constraint violations; other records are unaffected.",
        )
        self.record_id = record_id
        self.cause = cause


class StoreInfrastructureError(StoreError):
    """Raised when the store itself is unavailable (e.g. connection lost)."""

    def __init__(self, cause: str):
        super().__init__(
            message=f"Record store unavailable: {cause}",
            suggestion=(
                "Check the database connection. Sub-batches committed before the "
                "failure are kept; re-running the pipeline only processes records "
                "that are still unannotated."
            ),
        )
        self.cause = cause
