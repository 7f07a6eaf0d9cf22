"""
Pydantic models for BLAST results parsing.

These models represent the custom comma-separated BLAST output
(-outfmt "10 qacc sacc bitscore evalue pident stitle") produced when
searching unannotated protein sequences against a reference database.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping

from pydantic import BaseModel, Field, ValidationError, field_validator

from protannot.core.constants import (
    BLAST_CSV_COLUMNS,
    BLAST_CSV_DELIMITER,
    SUBJECT_TOKEN_SEPARATOR,
)
from protannot.core.exceptions import MalformedResultLineError


class AlignmentHit(BaseModel):
    """
    Single BLAST alignment hit from CSV output.

    Represents one match between a query protein and a reference subject
    sequence. Multiple hits per query are expected.

    Attributes:
        query_id: Query accession (the protein record identifier)
        subject_accession: Accession extracted from the subject token
        subject_title: Subject description with the leading tag removed
        bitscore: Bit score
        evalue: Expectation value
        pident: Percent identity (0-100)
    """

    query_id: str = Field(min_length=1, description="Query accession (record id)")
    subject_accession: str = Field(min_length=1, description="Subject accession")
    subject_title: str = Field(default="", description="Subject description")
    bitscore: float = Field(ge=0, description="Bit score")
    evalue: float = Field(ge=0, description="Expectation value")
    pident: float = Field(ge=0, description="Percent identity (0-100, clamped)")

    @field_validator("pident", mode="before")
    @classmethod
    def clamp_pident(cls, v: float) -> float:
        """
        Clamp percent identity to valid range [0, 100].

        BLAST can occasionally report pident > 100 due to rounding
        artifacts in alignment scoring.
        """
        if isinstance(v, (int, float)):
            return max(0.0, min(100.0, float(v)))
        return v

    model_config = {"frozen": True}

    @staticmethod
    def split_subject_token(token: str) -> str:
        """
        Extract the accession from a subject token.

        Subject tokens look like ``sp|P69905|HBA_HUMAN``; the second
        sub-field is the accession. Tokens without a separator are
        already bare accessions.
        """
        parts = token.strip().split(SUBJECT_TOKEN_SEPARATOR)
        if len(parts) >= 2:
            return parts[1].strip()
        return parts[0]

    @staticmethod
    def strip_title_tag(token: str) -> str:
        """
        Remove the short tag before the first space of a subject title.

        ``"sp Hemoglobin subunit alpha"`` -> ``"Hemoglobin subunit alpha"``.
        A title without a space has no tag and is returned unchanged.
        """
        token = token.strip()
        tag_and_title = token.split(" ", 1)
        if len(tag_and_title) == 2:
            return tag_and_title[1].strip()
        return token

    @classmethod
    def from_csv_line(cls, line: str, line_number: int | None = None) -> AlignmentHit:
        """
        Parse a single line from BLAST CSV output.

        Only the first five delimiters split the line, so commas inside
        the free-text subject title are preserved.

        Expected format:
        qacc,db|sacc|name,bitscore,evalue,pident,<tag> <title>

        Args:
            line: Comma-delimited BLAST output line
            line_number: Position in the output (for error reporting)

        Returns:
            Parsed AlignmentHit instance

        Raises:
            MalformedResultLineError: If the line has fewer than six fields
                or a numeric field cannot be parsed.
        """
        stripped = line.rstrip("\r\n")
        fields = stripped.split(BLAST_CSV_DELIMITER, len(BLAST_CSV_COLUMNS) - 1)
        if len(fields) < len(BLAST_CSV_COLUMNS):
            raise MalformedResultLineError(
                stripped,
                f"expected {len(BLAST_CSV_COLUMNS)} fields, got {len(fields)}",
                line_number,
            )

        query_id, subject, bitscore, evalue, pident, title = fields
        try:
            numbers = {
                "bitscore": float(bitscore),
                "evalue": float(evalue),
                "pident": float(pident),
            }
        except ValueError as e:
            raise MalformedResultLineError(stripped, f"invalid number ({e})", line_number) from e

        try:
            return cls(
                query_id=query_id.strip(),
                subject_accession=cls.split_subject_token(subject),
                subject_title=cls.strip_title_tag(title),
                **numbers,
            )
        except ValidationError as e:
            fields_in_error = ", ".join(
                str(err["loc"][0]) for err in e.errors() if err.get("loc")
            )
            raise MalformedResultLineError(
                stripped, f"invalid value for {fields_in_error}", line_number
            ) from e


class AlignmentResult(Mapping[str, list[AlignmentHit]]):
    """
    BLAST hits grouped by query id.

    Queries are kept in the order first seen in the output stream, and
    hits within a query keep their encounter order, which serves as the
    final tie-break during hit selection.
    """

    def __init__(self) -> None:
        self._hits: dict[str, list[AlignmentHit]] = {}

    def add(self, hit: AlignmentHit) -> None:
        """Append a hit to its query's collection, creating it if new."""
        self._hits.setdefault(hit.query_id, []).append(hit)

    def __getitem__(self, query_id: str) -> list[AlignmentHit]:
        return self._hits[query_id]

    def __iter__(self) -> Iterator[str]:
        return iter(self._hits)

    def __len__(self) -> int:
        return len(self._hits)

    @property
    def num_hits(self) -> int:
        """Total number of hits across all queries."""
        return sum(len(hits) for hits in self._hits.values())

    def __repr__(self) -> str:
        return f"AlignmentResult(queries={len(self)}, hits={self.num_hits})"
