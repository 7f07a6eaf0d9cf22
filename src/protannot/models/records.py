"""
Pydantic models for pipeline inputs, outputs and failure reporting.

Records and taxonomy nodes are read from the record store at pipeline
start and never mutated. Annotations are the only artifact written
back to the store.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class SequenceRecord(BaseModel):
    """
    Protein sequence lacking curated annotation.

    Attributes:
        record_id: Store identifier of the protein
        description: Current free-text description
        sequence: Amino acid residue string
    """

    record_id: int = Field(description="Store identifier of the protein")
    description: str = Field(default="", description="Current description")
    sequence: str = Field(min_length=1, description="Residue string")

    model_config = {"frozen": True}

    @property
    def query_id(self) -> str:
        """Identifier written to the BLAST query file and echoed back as qacc."""
        return str(self.record_id)


class TaxonomyNode(BaseModel):
    """Node of the taxonomy forest; parent_id is None for roots."""

    taxon_id: int
    parent_id: int | None = None
    rank: str = "no rank"
    name: str = ""

    model_config = {"frozen": True}


class ConsensusAnnotation(BaseModel):
    """
    Annotation resolved for one record, written back to the store.

    Attributes:
        record_id: Store identifier of the annotated protein
        resolved_taxon_id: Common-ancestor taxon, None when undetermined
        description_text: Description derived from the best hit
        provenance_tag: Marker for pipeline-derived annotations
    """

    record_id: int
    resolved_taxon_id: int | None = None
    description_text: str
    provenance_tag: str

    model_config = {"frozen": True}


class PipelineFailure(BaseModel):
    """
    One recovered or fatal failure, reported with the run summary.

    Attributes:
        stage: Pipeline stage where the failure occurred
        batch_index: 1-based batch number (0 before partitioning)
        record_id: Affected record, if the failure is record-level
        cause: Human-readable cause
    """

    stage: str
    batch_index: int = Field(ge=0)
    record_id: str | None = None
    cause: str

    model_config = {"frozen": True}


class ProgressEvent(BaseModel):
    """Progress notification emitted by the pipeline coordinator."""

    stage: str
    current: int = Field(ge=0)
    total: int = Field(ge=0)
    message: str = ""

    model_config = {"frozen": True}
