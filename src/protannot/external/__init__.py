"""
Wrappers for external bioinformatics tools.

Provides Python interfaces to the BLAST+ search used by the annotation
pipeline.
"""

from protannot.external.base import (
    ExternalTool,
    ToolExecutionError,
    ToolInterruptedError,
    ToolLaunchError,
    ToolResult,
)
from protannot.external.blast import BlastP, scoped_blast_files, write_query_fasta

__all__ = [
    "BlastP",
    "ExternalTool",
    "ToolExecutionError",
    "ToolInterruptedError",
    "ToolLaunchError",
    "ToolResult",
    "scoped_blast_files",
    "write_query_fasta",
]
