"""
Pydantic data models for protannot.

Provides type-safe models for BLAST hits, sequence records, taxonomy
nodes, annotations and pipeline configuration.
"""

from protannot.models.blast import AlignmentHit, AlignmentResult
from protannot.models.config import PipelineConfig, SelectionPolicy
from protannot.models.records import (
    ConsensusAnnotation,
    PipelineFailure,
    ProgressEvent,
    SequenceRecord,
    TaxonomyNode,
)

__all__ = [
    "AlignmentHit",
    "AlignmentResult",
    "ConsensusAnnotation",
    "PipelineConfig",
    "PipelineFailure",
    "ProgressEvent",
    "SelectionPolicy",
    "SequenceRecord",
    "TaxonomyNode",
]
