"""
Protannot: batch BLAST homology annotation of protein records.

Aligns protein sequences that lack curated annotation against a reference
database, selects hits per a configurable policy, resolves a consensus
taxon across the selected hits and writes the annotation back to the
record store.
"""

__version__ = "0.1.0"
__author__ = "Protannot Team"

from protannot.core.pipeline import PipelineCoordinator, PipelineReport, PipelineState
from protannot.models.config import PipelineConfig, SelectionPolicy

__all__ = [
    "PipelineConfig",
    "PipelineCoordinator",
    "PipelineReport",
    "PipelineState",
    "SelectionPolicy",
    "__version__",
]
